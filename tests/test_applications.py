from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portal.applications import ApplicationRegistry
from portal.content import ContentStore
from portal.database import Database
from portal.errors import Forbidden, NotFound, ValidationError
from portal.models import ApplicationStatus, AuthMethod, Principal, Role

VALID_ANSWERS = {
    "username": "Steve",
    "discord": "steve#0001",
    "age": "21",
    "timezone": "UTC+00:00 to UTC+03:00 (Europe/Africa)",
    "why": "I like building with friends.",
    "experience": "Two seasons on a survival server.",
}


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _principal(account_id: str, role: Role) -> Principal:
    return Principal(
        account_id=account_id,
        display_name=account_id.title(),
        role=role,
        auth_method=AuthMethod.EMAIL,
    )


APPLICANT = _principal("applicant", Role.USER)
MANAGER = _principal("manager", Role.MANAGER)
STAFF = _principal("staff", Role.STAFF)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "portal.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def registry(database: Database, clock: FakeClock) -> ApplicationRegistry:
    return ApplicationRegistry(database, content=ContentStore(database), clock=clock)


def test_submit_creates_pending_entry(registry: ApplicationRegistry, clock: FakeClock) -> None:
    registry.submit(APPLICANT, VALID_ANSWERS)

    entries = registry.list_for_user(APPLICANT.account_id)
    assert len(entries) == 1
    assert entries[0].status is ApplicationStatus.PENDING
    assert entries[0].reviewed_at is None
    assert entries[0].submitted_at == clock.now
    assert entries[0].answers == VALID_ANSWERS


def test_users_may_submit_repeatedly(registry: ApplicationRegistry) -> None:
    registry.submit(APPLICANT, VALID_ANSWERS)
    registry.submit(APPLICANT, VALID_ANSWERS)

    assert len(registry.list_for_user(APPLICANT.account_id)) == 2
    assert registry.list_for_user("someone-else") == []


def test_missing_required_field_is_rejected(registry: ApplicationRegistry) -> None:
    answers = dict(VALID_ANSWERS, why="   ")
    with pytest.raises(ValidationError) as excinfo:
        registry.submit(APPLICANT, answers)

    assert excinfo.value.fields == ("why",)
    assert registry.list_for_user(APPLICANT.account_id) == []


def test_typed_fields_are_checked(registry: ApplicationRegistry) -> None:
    with pytest.raises(ValidationError):
        registry.submit(APPLICANT, dict(VALID_ANSWERS, age="twenty"))
    with pytest.raises(ValidationError):
        registry.submit(APPLICANT, dict(VALID_ANSWERS, timezone="Mars"))


def test_answers_are_an_open_mapping(database: Database) -> None:
    registry = ApplicationRegistry(database)
    entry = registry.submit(APPLICANT, {"favourite_block": "  deepslate  "})

    assert entry.answers == {"favourite_block": "deepslate"}


def test_transition_stamps_review_time(registry: ApplicationRegistry, clock: FakeClock) -> None:
    entry = registry.submit(APPLICANT, VALID_ANSWERS)

    clock.now += timedelta(hours=2)
    approved = registry.transition(MANAGER, entry.id, ApplicationStatus.APPROVED)
    assert approved.status is ApplicationStatus.APPROVED
    assert approved.reviewed_at == clock.now

    reviewed_at = approved.reviewed_at
    clock.now += timedelta(hours=2)
    reset = registry.transition(MANAGER, entry.id, "pending")
    assert reset.status is ApplicationStatus.PENDING
    assert reset.reviewed_at == reviewed_at


def test_any_state_is_reachable(registry: ApplicationRegistry) -> None:
    entry = registry.submit(APPLICANT, VALID_ANSWERS)
    for status in (
        ApplicationStatus.REJECTED,
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.PENDING,
    ):
        assert registry.transition(MANAGER, entry.id, status).status is status


def test_review_requires_manager(registry: ApplicationRegistry) -> None:
    entry = registry.submit(APPLICANT, VALID_ANSWERS)

    for actor in (APPLICANT, STAFF):
        with pytest.raises(Forbidden):
            registry.transition(actor, entry.id, ApplicationStatus.APPROVED)
        with pytest.raises(Forbidden):
            registry.annotate_internal(actor, entry.id, "note")
        with pytest.raises(Forbidden):
            registry.delete(actor, entry.id)


def test_unknown_entries_raise_not_found(registry: ApplicationRegistry) -> None:
    with pytest.raises(NotFound):
        registry.transition(MANAGER, "missing", ApplicationStatus.APPROVED)
    with pytest.raises(NotFound):
        registry.delete(MANAGER, "missing")


def test_notes_and_messages_overwrite(registry: ApplicationRegistry) -> None:
    entry = registry.submit(APPLICANT, VALID_ANSWERS)

    registry.annotate_internal(MANAGER, entry.id, "first")
    noted = registry.annotate_internal(MANAGER, entry.id, "second")
    assert noted.notes == "second"

    messaged = registry.message_applicant(MANAGER, entry.id, "Welcome aboard!")
    assert messaged.admin_message == "Welcome aboard!"
    assert messaged.notes == "second"

    cleared = registry.message_applicant(MANAGER, entry.id, "  ")
    assert cleared.admin_message is None


def test_delete_removes_entry(registry: ApplicationRegistry) -> None:
    entry = registry.submit(APPLICANT, VALID_ANSWERS)
    registry.delete(MANAGER, entry.id)

    assert registry.list_for_user(APPLICANT.account_id) == []


def test_list_all_filters_and_stats(registry: ApplicationRegistry) -> None:
    first = registry.submit(APPLICANT, VALID_ANSWERS)
    registry.submit(_principal("other", Role.USER), dict(VALID_ANSWERS, username="Alex"))
    registry.transition(MANAGER, first.id, ApplicationStatus.APPROVED)

    with pytest.raises(Forbidden):
        registry.list_all(APPLICANT)

    approved = registry.list_all(STAFF, status="approved")
    assert [entry.id for entry in approved] == [first.id]
    assert [entry.answers["username"] for entry in registry.list_all(STAFF, query="alex")] == ["Alex"]

    stats = registry.stats(STAFF)
    assert (stats.total, stats.pending, stats.approved, stats.rejected) == (2, 1, 1, 0)


def test_listing_is_newest_first_across_clock_offsets(registry: ApplicationRegistry, clock: FakeClock) -> None:
    clock.now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=5)))
    older = registry.submit(APPLICANT, VALID_ANSWERS)
    clock.now = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
    newer = registry.submit(APPLICANT, VALID_ANSWERS)

    entries = registry.list_for_user(APPLICANT.account_id)
    assert [entry.id for entry in entries] == [newer.id, older.id]
    assert entries[1].submitted_at == older.submitted_at
    assert [entry.id for entry in registry.list_all(STAFF)] == [newer.id, older.id]
