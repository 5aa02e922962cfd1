from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portal.database import Database, hash_password, verify_password
from portal.errors import DuplicateIdentity, NotFound
from portal.models import (
    Account,
    AccountStatus,
    ApplicationEntry,
    ApplicationStatus,
    AuthMethod,
    IntakeStatus,
    Role,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db_path = tmp_path / "portal.sqlite3"
    db = Database(db_path)
    db.initialize()
    return db


def _account(account_id: str, email: str | None, role: Role = Role.USER) -> Account:
    return Account(
        id=account_id,
        display_name=account_id.title(),
        auth_method=AuthMethod.EMAIL,
        role=role,
        status=AccountStatus.ACTIVE,
        created_at=NOW,
        email=email,
        password_hash=hash_password("Sup3rSecret!"),
    )


def test_password_hashes_are_salted_and_verifiable() -> None:
    first = hash_password("Sup3rSecret!")
    second = hash_password("Sup3rSecret!")

    assert first != second
    assert "Sup3rSecret!" not in first
    assert verify_password("Sup3rSecret!", first)
    assert not verify_password("wrong-password", first)
    assert not verify_password("Sup3rSecret!", None)
    assert not verify_password("Sup3rSecret!", "not-a-hash")


def test_account_round_trip_and_email_lookup(database: Database) -> None:
    database.insert_account(_account("alice", "alice@example.com"))

    loaded = database.get_account_by_email("  ALICE@example.com ")
    assert loaded is not None
    assert loaded.id == "alice"
    assert loaded.created_at == NOW
    assert database.get_account("missing") is None


def test_duplicate_email_is_rejected(database: Database) -> None:
    database.insert_account(_account("alice", "alice@example.com"))
    with pytest.raises(DuplicateIdentity):
        database.insert_account(_account("alice2", "alice@example.com"))


def test_only_one_owner_can_exist(database: Database) -> None:
    database.insert_account(_account("owner", "owner@example.com", Role.OWNER))
    with pytest.raises(DuplicateIdentity):
        database.insert_account(_account("owner2", "owner2@example.com", Role.OWNER))


def test_failed_mutator_leaves_account_unchanged(database: Database) -> None:
    database.insert_account(_account("alice", "alice@example.com"))

    def explode(account: Account) -> Account:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        database.update_account("alice", explode)

    assert database.get_account("alice").role is Role.USER

    with pytest.raises(NotFound):
        database.update_account("missing", lambda account: account)


def test_application_listing_is_scoped_and_newest_first(database: Database) -> None:
    for index, user_id in enumerate(["alice", "bob", "alice"]):
        database.insert_application(
            ApplicationEntry(
                id=f"app-{index}",
                user_id=user_id,
                answers={"why": f"reason {index}"},
                status=ApplicationStatus.PENDING,
                submitted_at=NOW + timedelta(minutes=index),
            )
        )

    mine = database.list_applications(user_id="alice")
    assert [entry.id for entry in mine] == ["app-2", "app-0"]
    assert mine[0].answers == {"why": "reason 2"}
    assert database.list_applications(status=ApplicationStatus.APPROVED) == []

    assert database.delete_application("app-1") is True
    assert database.delete_application("app-1") is False


def test_schedule_defaults_to_open(database: Database) -> None:
    state = database.get_schedule()
    assert state.status is IntakeStatus.OPEN
    assert state.open_date is None
    assert state.close_date is None


def test_schedule_update_persists_dates(database: Database) -> None:
    opens = NOW + timedelta(days=1)
    database.update_schedule(lambda state: replace(state, status=IntakeStatus.COMING_SOON, open_date=opens))

    state = database.get_schedule()
    assert state.status is IntakeStatus.COMING_SOON
    assert state.open_date == opens
    assert state.accepting_submissions is False


def test_content_values_are_json(database: Database) -> None:
    assert database.get_content("rules") is None
    database.set_content("rules", ["Be kind", "No griefing"])
    database.set_content("rules", ["Be kind"])
    assert database.get_content("rules") == ["Be kind"]
