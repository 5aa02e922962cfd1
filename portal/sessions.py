"""In-memory session handling for portal principals."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from .database import Database
from .models import Account, Clock, Principal, Session, utcnow

logger = logging.getLogger("portal.sessions")


@dataclass
class _SessionRecord:
    principal: Principal
    issued_at: datetime
    expires_at: Optional[datetime]


class SessionManager:
    """Issue, validate, and revoke session tokens.

    Tokens are opaque; the principal behind a token is re-read from the
    database on every :meth:`resolve` so role changes, bans and deletions take
    effect immediately.
    """

    def __init__(
        self,
        database: Database,
        *,
        ttl: Optional[timedelta] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._database = database
        self._ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> Optional[timedelta]:
        return self._ttl

    @property
    def cookie_max_age(self) -> Optional[int]:
        if self._ttl is None:
            return None
        return int(self._ttl.total_seconds())

    def create(self, account: Account) -> Session:
        token = secrets.token_urlsafe(32)
        now = self._clock()
        record = _SessionRecord(
            principal=Principal.from_account(account),
            issued_at=now,
            expires_at=now + self._ttl if self._ttl is not None else None,
        )
        with self._lock:
            self._sessions[token] = record
        return Session(
            token=token,
            principal=record.principal,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
        )

    def resolve(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None

        now = self._clock()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at is not None and record.expires_at <= now:
                self._sessions.pop(token, None)
                return None

        account = self._database.get_account(record.principal.account_id)

        with self._lock:
            if token not in self._sessions:
                return None
            if account is None or account.is_banned:
                self._sessions.pop(token, None)
                logger.info(
                    "Dropped session for account %s (%s)",
                    record.principal.account_id,
                    "deleted" if account is None else "banned",
                )
                return None
            record.principal = Principal.from_account(account)
            if self._ttl is not None:
                record.expires_at = now + self._ttl
            return Session(
                token=token,
                principal=record.principal,
                issued_at=record.issued_at,
                expires_at=record.expires_at,
            )

    def destroy(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def destroy_for_account(self, account_id: str) -> int:
        with self._lock:
            doomed = [
                token
                for token, record in self._sessions.items()
                if record.principal.account_id == account_id
            ]
            for token in doomed:
                del self._sessions[token]
        return len(doomed)


__all__ = ["SessionManager"]
