"""Entry points used by the HTTP layer, the CLI and any other presentation code.

Every public :class:`Portal` method returns a :class:`~portal.errors.Result`;
expected failures never propagate past this module.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, ParamSpec, TypeVar

from . import roles
from .accounts import AccountPatch, AccountService
from .applications import ApplicationRegistry
from .config import PortalConfig
from .content import ContentStore
from .database import Database
from .errors import Forbidden, PortalError, Result, Unauthenticated
from .models import (
    Account,
    ApplicationEntry,
    ApplicationField,
    ApplicationStats,
    ApplicationStatus,
    Clock,
    IntakeStatus,
    Principal,
    Role,
    ScheduleState,
    Session,
    utcnow,
)
from .schedule import ScheduleEngine
from .sessions import SessionManager

logger = logging.getLogger("portal.core")

P = ParamSpec("P")
T = TypeVar("T")


def _as_result(func: Callable[P, T]) -> Callable[P, Result[T]]:
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
        try:
            return Result(value=func(*args, **kwargs))
        except PortalError as exc:
            logger.debug("%s failed: %s (%s)", func.__name__, exc.message, exc.code)
            return Result(error=exc)

    return wrapper


class Portal:
    """Wires the account, session, application and schedule services together."""

    def __init__(
        self,
        database: Database,
        *,
        config: Optional[PortalConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config or PortalConfig()
        self.database = database
        self.sessions = SessionManager(database, ttl=self.config.session_ttl, clock=clock)
        self.accounts = AccountService(database, self.sessions, owner=self.config.owner, clock=clock)
        self.content = ContentStore(database)
        self.applications = ApplicationRegistry(database, content=self.content, clock=clock)
        self.schedule = ScheduleEngine(database, clock=clock)

    def _principal(self, token: Optional[str]) -> Principal:
        session = self.sessions.resolve(token)
        if session is None:
            raise Unauthenticated("Sign in to continue")
        return session.principal

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @_as_result
    def register(self, email: str, password: str, display_name: str) -> Session:
        _, session = self.accounts.register(email=email, password=password, display_name=display_name)
        return session

    @_as_result
    def login(self, email: str, password: str) -> Session:
        _, session = self.accounts.login(email, password)
        return session

    @_as_result
    def login_via_external_provider(
        self,
        provider_id: str,
        provider_username: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Session:
        _, session = self.accounts.login_via_external_provider(
            provider_id,
            provider_username=provider_username,
            display_name=display_name,
        )
        return session

    @_as_result
    def logout(self, token: str) -> None:
        self.sessions.destroy(token)

    @_as_result
    def get_current_principal(self, token: Optional[str]) -> Optional[Principal]:
        session = self.sessions.resolve(token)
        return session.principal if session is not None else None

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------
    @_as_result
    def submit_application(self, token: Optional[str], answers: Mapping[str, object]) -> ApplicationEntry:
        return self.applications.submit(self._principal(token), answers)

    @_as_result
    def list_my_applications(self, token: Optional[str]) -> List[ApplicationEntry]:
        principal = self._principal(token)
        entries = self.applications.list_for_user(principal.account_id)
        if roles.can_access_admin_console(principal.role):
            return entries
        # Internal notes are for staff eyes only.
        return [replace(entry, notes=None) for entry in entries]

    @_as_result
    def list_all_applications(
        self,
        token: Optional[str],
        status: ApplicationStatus | str | None = None,
        query: Optional[str] = None,
    ) -> List[ApplicationEntry]:
        return self.applications.list_all(self._principal(token), status=status, query=query)

    @_as_result
    def review_application(
        self,
        token: Optional[str],
        entry_id: str,
        status: ApplicationStatus | str,
    ) -> ApplicationEntry:
        return self.applications.transition(self._principal(token), entry_id, status)

    @_as_result
    def annotate_application(self, token: Optional[str], entry_id: str, note: Optional[str]) -> ApplicationEntry:
        return self.applications.annotate_internal(self._principal(token), entry_id, note)

    @_as_result
    def message_applicant(self, token: Optional[str], entry_id: str, message: Optional[str]) -> ApplicationEntry:
        return self.applications.message_applicant(self._principal(token), entry_id, message)

    @_as_result
    def delete_application(self, token: Optional[str], entry_id: str) -> None:
        self.applications.delete(self._principal(token), entry_id)

    @_as_result
    def application_stats(self, token: Optional[str]) -> ApplicationStats:
        return self.applications.stats(self._principal(token))

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @_as_result
    def list_accounts(self, token: Optional[str], query: Optional[str] = None) -> List[Account]:
        return self.accounts.list_accounts(self._principal(token), query)

    @_as_result
    def manage_role(self, token: Optional[str], user_id: str, role: Role | str) -> Account:
        return self.accounts.update_role(self._principal(token), user_id, role)

    @_as_result
    def manage_account(self, token: Optional[str], user_id: str, patch: AccountPatch) -> Account:
        return self.accounts.update_account(self._principal(token), user_id, patch)

    @_as_result
    def toggle_ban(self, token: Optional[str], user_id: str) -> Account:
        return self.accounts.toggle_ban_status(self._principal(token), user_id)

    @_as_result
    def delete_account(self, token: Optional[str], user_id: str) -> Account:
        return self.accounts.delete_account(self._principal(token), user_id)

    # ------------------------------------------------------------------
    # Intake schedule
    # ------------------------------------------------------------------
    @_as_result
    def get_intake_status(self) -> ScheduleState:
        return self.schedule.read_schedule()

    @_as_result
    def set_intake_status(self, token: Optional[str], status: IntakeStatus | str) -> ScheduleState:
        self._require_settings(self._principal(token))
        return self.schedule.set_status(status)

    @_as_result
    def set_schedule(
        self,
        token: Optional[str],
        open_date: Optional[datetime] = None,
        close_date: Optional[datetime] = None,
    ) -> ScheduleState:
        self._require_settings(self._principal(token))
        return self.schedule.set_schedule(open_date, close_date)

    # ------------------------------------------------------------------
    # Site content
    # ------------------------------------------------------------------
    @_as_result
    def get_application_fields(self) -> List[ApplicationField]:
        return self.content.application_fields()

    @_as_result
    def set_application_fields(
        self,
        token: Optional[str],
        fields: Iterable[ApplicationField | Mapping[str, Any]],
    ) -> List[ApplicationField]:
        self._require_settings(self._principal(token))
        return self.content.save_application_fields(fields)

    @_as_result
    def get_content(self, key: str, default: Any = None) -> Any:
        return self.content.get(key, default)

    @_as_result
    def set_content(self, token: Optional[str], key: str, value: Any) -> None:
        self._require_settings(self._principal(token))
        self.content.set(key, value)

    @staticmethod
    def _require_settings(principal: Principal) -> None:
        if not roles.can_manage_site_settings(principal.role):
            raise Forbidden("You do not have permission to manage site settings")


__all__ = ["Portal"]
