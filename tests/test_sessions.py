from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portal.database import Database, hash_password
from portal.models import Account, AccountStatus, AuthMethod, Role
from portal.sessions import SessionManager


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "portal.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def account(database: Database, clock: FakeClock) -> Account:
    return database.insert_account(
        Account(
            id="alice",
            display_name="Alice",
            auth_method=AuthMethod.EMAIL,
            role=Role.USER,
            status=AccountStatus.ACTIVE,
            created_at=clock(),
            email="alice@example.com",
            password_hash=hash_password("Password123"),
        )
    )


def test_tokens_are_opaque_and_unique(database: Database, account: Account) -> None:
    manager = SessionManager(database)
    first = manager.create(account)
    second = manager.create(account)

    assert first.token != second.token
    assert account.id not in first.token
    assert manager.resolve("unknown") is None
    assert manager.resolve(None) is None


def test_resolve_reflects_current_role(database: Database, account: Account) -> None:
    manager = SessionManager(database)
    session = manager.create(account)

    database.update_account(account.id, lambda current: replace(current, role=Role.STAFF))

    resolved = manager.resolve(session.token)
    assert resolved is not None
    assert resolved.principal.role is Role.STAFF


def test_deleted_account_session_no_longer_resolves(database: Database, account: Account) -> None:
    manager = SessionManager(database)
    session = manager.create(account)

    database.delete_account(account.id, lambda target: None)

    assert manager.resolve(session.token) is None


def test_destroy_revokes_tokens(database: Database, account: Account) -> None:
    manager = SessionManager(database)
    first = manager.create(account)
    second = manager.create(account)

    manager.destroy(first.token)
    assert manager.resolve(first.token) is None
    assert manager.resolve(second.token) is not None

    assert manager.destroy_for_account(account.id) == 1
    assert manager.resolve(second.token) is None


def test_sessions_never_expire_without_ttl(database: Database, account: Account, clock: FakeClock) -> None:
    manager = SessionManager(database, clock=clock)
    session = manager.create(account)

    assert session.expires_at is None
    assert manager.cookie_max_age is None
    clock.advance(days=365)
    assert manager.resolve(session.token) is not None


def test_ttl_slides_on_use_and_expires_when_idle(database: Database, account: Account, clock: FakeClock) -> None:
    manager = SessionManager(database, ttl=timedelta(hours=1), clock=clock)
    session = manager.create(account)
    assert session.expires_at == clock.now + timedelta(hours=1)
    assert manager.cookie_max_age == 3600

    clock.advance(minutes=50)
    refreshed = manager.resolve(session.token)
    assert refreshed is not None
    assert refreshed.expires_at == clock.now + timedelta(hours=1)

    clock.advance(minutes=61)
    assert manager.resolve(session.token) is None
