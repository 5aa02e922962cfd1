"""Membership application registry and its review state machine."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from . import roles
from .content import ContentStore
from .database import Database
from .errors import Forbidden, NotFound, ValidationError
from .models import (
    ApplicationEntry,
    ApplicationField,
    ApplicationStats,
    ApplicationStatus,
    Clock,
    Principal,
    utcnow,
)

logger = logging.getLogger("portal.applications")

_MAX_ANSWERS = 64
_MAX_ANSWER_LENGTH = 4000
_MAX_NOTE_LENGTH = 4000


def _coerce_status(value: ApplicationStatus | str) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown application status: {value}", fields=("status",)) from exc


def _normalise_answers(answers: Mapping[str, object]) -> Dict[str, str]:
    if len(answers) > _MAX_ANSWERS:
        raise ValidationError("Too many answers provided")
    cleaned: Dict[str, str] = {}
    for key, value in answers.items():
        key_text = str(key).strip()
        if not key_text or value is None:
            continue
        value_text = str(value).strip()
        if len(value_text) > _MAX_ANSWER_LENGTH:
            raise ValidationError(f"Answer for {key_text} is too long", fields=(key_text,))
        cleaned[key_text] = value_text
    return cleaned


def _validate_answers(answers: Mapping[str, str], fields: List[ApplicationField]) -> None:
    missing = [
        field
        for field in fields
        if field.enabled and field.required and not answers.get(field.id)
    ]
    if missing:
        raise ValidationError(
            "Please fill in required fields: " + ", ".join(field.label for field in missing),
            fields=tuple(field.id for field in missing),
        )

    for field in fields:
        value = answers.get(field.id)
        if not field.enabled or not value:
            continue
        if field.type == "number":
            try:
                float(value)
            except ValueError:
                raise ValidationError(f"{field.label} must be a number", fields=(field.id,)) from None
        elif field.type == "select" and field.options and value not in field.options:
            raise ValidationError(f"{field.label} must be one of the listed options", fields=(field.id,))


def _normalise_note(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    value = text.strip()
    if len(value) > _MAX_NOTE_LENGTH:
        raise ValidationError("Message is too long")
    return value or None


class ApplicationRegistry:
    """Stores applications and enforces who may move them between states.

    Any status can move to any other so reviewers can correct mistakes, but
    every move away from ``pending`` stamps ``reviewed_at``.
    """

    def __init__(
        self,
        database: Database,
        *,
        content: Optional[ContentStore] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._database = database
        self._content = content
        self._clock = clock

    def submit(self, principal: Principal, answers: Mapping[str, object]) -> ApplicationEntry:
        cleaned = _normalise_answers(answers)
        if self._content is not None:
            _validate_answers(cleaned, self._content.application_fields())

        entry = ApplicationEntry(
            id=uuid.uuid4().hex,
            user_id=principal.account_id,
            answers=cleaned,
            status=ApplicationStatus.PENDING,
            submitted_at=self._clock(),
        )
        self._database.insert_application(entry)
        logger.info("Account %s submitted application %s", principal.account_id, entry.id)
        return entry

    def transition(
        self,
        actor: Principal,
        entry_id: str,
        new_status: ApplicationStatus | str,
    ) -> ApplicationEntry:
        self._require_reviewer(actor)
        status = _coerce_status(new_status)
        now = self._clock()

        def mutate(entry: ApplicationEntry) -> ApplicationEntry:
            if status is ApplicationStatus.PENDING:
                return replace(entry, status=status)
            return replace(entry, status=status, reviewed_at=now)

        updated = self._database.update_application(entry_id, mutate)
        logger.info("Account %s moved application %s to %s", actor.account_id, entry_id, status.value)
        return updated

    def annotate_internal(self, actor: Principal, entry_id: str, note: Optional[str]) -> ApplicationEntry:
        self._require_reviewer(actor)
        text = _normalise_note(note)
        return self._database.update_application(entry_id, lambda entry: replace(entry, notes=text))

    def message_applicant(self, actor: Principal, entry_id: str, message: Optional[str]) -> ApplicationEntry:
        self._require_reviewer(actor)
        text = _normalise_note(message)
        return self._database.update_application(entry_id, lambda entry: replace(entry, admin_message=text))

    def delete(self, actor: Principal, entry_id: str) -> None:
        self._require_reviewer(actor)
        if not self._database.delete_application(entry_id):
            raise NotFound("Application not found")
        logger.info("Account %s deleted application %s", actor.account_id, entry_id)

    def list_for_user(self, user_id: str) -> List[ApplicationEntry]:
        return self._database.list_applications(user_id=user_id)

    def list_all(
        self,
        actor: Principal,
        *,
        status: ApplicationStatus | str | None = None,
        query: Optional[str] = None,
    ) -> List[ApplicationEntry]:
        self._require_console(actor)
        status_filter = _coerce_status(status) if status else None
        entries = self._database.list_applications(status=status_filter)

        needle = (query or "").strip().lower()
        if not needle:
            return entries
        return [
            entry
            for entry in entries
            if any(needle in value.lower() for value in entry.answers.values())
        ]

    def stats(self, actor: Principal) -> ApplicationStats:
        self._require_console(actor)
        counts = Counter(entry.status for entry in self._database.list_applications())
        return ApplicationStats(
            total=sum(counts.values()),
            pending=counts[ApplicationStatus.PENDING],
            under_review=counts[ApplicationStatus.UNDER_REVIEW],
            approved=counts[ApplicationStatus.APPROVED],
            rejected=counts[ApplicationStatus.REJECTED],
        )

    @staticmethod
    def _require_reviewer(actor: Principal) -> None:
        if not roles.can_review_applications(actor.role):
            raise Forbidden("You do not have permission to review applications")

    @staticmethod
    def _require_console(actor: Principal) -> None:
        if not roles.can_access_admin_console(actor.role):
            raise Forbidden("You do not have access to the admin console")


__all__ = ["ApplicationRegistry"]
