from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portal.database import Database
from portal.errors import ValidationError
from portal.models import IntakeStatus
from portal.schedule import ScheduleEngine


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
def engine(database: Database, clock: FakeClock) -> ScheduleEngine:
    return ScheduleEngine(database, clock=clock)


def test_elapsed_open_date_opens_intake_once(engine: ScheduleEngine, database: Database, clock: FakeClock) -> None:
    engine.set_status(IntakeStatus.COMING_SOON)
    engine.set_schedule(open_date=clock.now - timedelta(seconds=1))

    assert engine.read_current_status() is IntakeStatus.OPEN
    assert database.get_schedule().open_date is None
    assert engine.read_current_status() is IntakeStatus.OPEN

    engine.set_status(IntakeStatus.CLOSED)
    assert engine.read_current_status() is IntakeStatus.CLOSED


def test_open_boundary_keeps_ending_soon(engine: ScheduleEngine, database: Database, clock: FakeClock) -> None:
    engine.set_status(IntakeStatus.ENDING_SOON)
    engine.set_schedule(open_date=clock.now - timedelta(minutes=5))

    assert engine.read_current_status() is IntakeStatus.ENDING_SOON
    assert database.get_schedule().open_date is None


def test_future_boundaries_wait_for_the_clock(engine: ScheduleEngine, clock: FakeClock) -> None:
    engine.set_status(IntakeStatus.COMING_SOON)
    engine.set_schedule(
        open_date=clock.now + timedelta(hours=1),
        close_date=clock.now + timedelta(hours=3),
    )

    assert engine.read_current_status() is IntakeStatus.COMING_SOON
    assert not engine.is_intake_open()

    clock.advance(hours=1)
    assert engine.read_current_status() is IntakeStatus.OPEN
    assert engine.is_intake_open()

    clock.advance(hours=2)
    state = engine.read_schedule()
    assert state.status is IntakeStatus.CLOSED
    assert state.open_date is None
    assert state.close_date is None
    assert not state.accepting_submissions


def test_manual_status_sticks_after_boundary_consumed(engine: ScheduleEngine, clock: FakeClock) -> None:
    engine.set_schedule(close_date=clock.now + timedelta(minutes=1))
    clock.advance(minutes=2)
    assert engine.read_current_status() is IntakeStatus.CLOSED

    engine.set_status("open")
    clock.advance(days=1)
    assert engine.read_current_status() is IntakeStatus.OPEN


def test_accepting_flag_tracks_status(engine: ScheduleEngine, database: Database) -> None:
    engine.set_status(IntakeStatus.ENDING_SOON)
    assert database.get_schedule().accepting_submissions is True

    engine.set_status(IntakeStatus.COMING_SOON)
    assert database.get_schedule().accepting_submissions is False


def test_set_schedule_clears_dates_and_validates_order(engine: ScheduleEngine, database: Database, clock: FakeClock) -> None:
    engine.set_schedule(open_date=clock.now + timedelta(days=1), close_date=clock.now + timedelta(days=2))
    engine.set_schedule(open_date=clock.now + timedelta(days=1))
    assert database.get_schedule().close_date is None

    with pytest.raises(ValidationError):
        engine.set_schedule(open_date=clock.now + timedelta(days=2), close_date=clock.now + timedelta(days=1))
    with pytest.raises(ValidationError):
        engine.set_status("paused")


def test_naive_dates_are_treated_as_utc(engine: ScheduleEngine, database: Database) -> None:
    engine.set_schedule(open_date=datetime(2030, 1, 1, 9, 0))
    assert database.get_schedule().open_date == datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_concurrent_reads_fire_a_boundary_once(
    engine: ScheduleEngine,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine.set_status(IntakeStatus.COMING_SOON)
    engine.set_schedule(open_date=clock.now - timedelta(seconds=1))
    caplog.set_level(logging.INFO, logger="portal.schedule")

    results: list[IntakeStatus] = []
    barrier = threading.Barrier(8)

    def reader() -> None:
        barrier.wait()
        results.append(engine.read_current_status())

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [IntakeStatus.OPEN] * 8
    fired = [record for record in caplog.records if "boundary" in record.getMessage()]
    assert len(fired) == 1


def test_close_date_is_consumed_when_already_closed(
    engine: ScheduleEngine,
    database: Database,
    clock: FakeClock,
) -> None:
    engine.set_status(IntakeStatus.CLOSED)
    engine.set_schedule(close_date=clock.now - timedelta(seconds=1))

    assert engine.read_current_status() is IntakeStatus.CLOSED
    assert database.get_schedule().close_date is None

    engine.set_status(IntakeStatus.OPEN)
    assert engine.read_current_status() is IntakeStatus.OPEN


def test_both_boundaries_elapsed_in_one_read(engine: ScheduleEngine, database: Database, clock: FakeClock) -> None:
    engine.set_status(IntakeStatus.COMING_SOON)
    engine.set_schedule(
        open_date=clock.now + timedelta(hours=1),
        close_date=clock.now + timedelta(hours=2),
    )

    clock.advance(hours=3)
    assert engine.read_current_status() is IntakeStatus.CLOSED

    stored = database.get_schedule()
    assert stored.status is IntakeStatus.CLOSED
    assert stored.open_date is None
    assert stored.close_date is None
    assert not stored.accepting_submissions
