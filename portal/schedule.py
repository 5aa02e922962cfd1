"""Time-driven open/close schedule for the application intake."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .database import Database
from .errors import ValidationError
from .models import Clock, IntakeStatus, ScheduleState, utcnow

logger = logging.getLogger("portal.schedule")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_status(value: IntakeStatus | str) -> IntakeStatus:
    try:
        return IntakeStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown intake status: {value}", fields=("status",)) from exc


def _is_due(state: ScheduleState, now: datetime) -> bool:
    return (state.open_date is not None and now >= state.open_date) or (
        state.close_date is not None and now >= state.close_date
    )


class ScheduleEngine:
    """Evaluates scheduled boundaries whenever the intake status is read.

    A boundary that has elapsed flips the status once and is then cleared, so
    a later manual change is never overridden by the same date again.
    """

    def __init__(self, database: Database, *, clock: Clock = utcnow) -> None:
        self._database = database
        self._clock = clock
        self._lock = threading.Lock()

    def read_schedule(self) -> ScheduleState:
        """Return the schedule after applying any boundary that has elapsed."""

        now = self._now()
        current = self._database.get_schedule()
        if not _is_due(current, now):
            return current

        fired: List[Tuple[str, datetime, IntakeStatus]] = []

        def evaluate(state: ScheduleState) -> Optional[ScheduleState]:
            fired.clear()
            updated = state
            if updated.open_date is not None and now >= updated.open_date:
                if not updated.status.accepting_submissions:
                    updated = replace(updated, status=IntakeStatus.OPEN)
                fired.append(("open", updated.open_date, updated.status))
                updated = replace(updated, open_date=None)
            if updated.close_date is not None and now >= updated.close_date:
                if updated.status is not IntakeStatus.CLOSED:
                    updated = replace(updated, status=IntakeStatus.CLOSED)
                fired.append(("close", updated.close_date, updated.status))
                updated = replace(updated, close_date=None)
            return updated if fired else None

        with self._lock:
            state = self._database.update_schedule(evaluate)

        for boundary, scheduled_for, status in fired:
            logger.info(
                "Scheduled %s boundary (%s) elapsed; intake status is now %s",
                boundary,
                scheduled_for.isoformat(),
                status.value,
            )
        return state

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now

    def read_current_status(self) -> IntakeStatus:
        return self.read_schedule().status

    def is_intake_open(self) -> bool:
        return self.read_current_status().accepting_submissions

    def set_status(self, status: IntakeStatus | str) -> ScheduleState:
        new_status = _coerce_status(status)
        with self._lock:
            state = self._database.update_schedule(lambda current: replace(current, status=new_status))
        logger.info("Intake status set to %s", new_status.value)
        return state

    def set_schedule(
        self,
        open_date: Optional[datetime] = None,
        close_date: Optional[datetime] = None,
    ) -> ScheduleState:
        """Replace both boundaries; ``None`` removes a boundary."""

        opens = _as_utc(open_date)
        closes = _as_utc(close_date)
        if opens is not None and closes is not None and closes <= opens:
            raise ValidationError("The close date must be after the open date", fields=("close_date",))

        with self._lock:
            state = self._database.update_schedule(
                lambda current: replace(current, open_date=opens, close_date=closes)
            )
        logger.info(
            "Intake schedule set (open=%s, close=%s)",
            opens.isoformat() if opens else "none",
            closes.isoformat() if closes else "none",
        )
        return state


__all__ = ["ScheduleEngine"]
