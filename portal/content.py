"""Key-value site content and application form definitions."""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Tuple

from .database import Database
from .errors import ValidationError
from .models import ApplicationField

APPLICATION_FIELDS_KEY = "application_fields"

FIELD_TYPES = ("text", "textarea", "number", "select")

_ALLOWED_FIELD_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_ALLOWED_CONTENT_KEY = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

DEFAULT_APPLICATION_FIELDS: Tuple[ApplicationField, ...] = (
    ApplicationField(id="username", label="Minecraft Username", placeholder="e.g. Steve"),
    ApplicationField(id="discord", label="Discord Username", placeholder="e.g. username#1234"),
    ApplicationField(id="age", label="Age", type="number", placeholder="e.g. 18"),
    ApplicationField(
        id="timezone",
        label="Time Zone",
        type="select",
        options=(
            "UTC-12:00 to UTC-08:00 (Pacific)",
            "UTC-07:00 to UTC-05:00 (Americas)",
            "UTC-04:00 to UTC-01:00 (Atlantic)",
            "UTC+00:00 to UTC+03:00 (Europe/Africa)",
            "UTC+04:00 to UTC+06:00 (Central Asia)",
            "UTC+07:00 to UTC+09:00 (East Asia)",
            "UTC+10:00 to UTC+12:00 (Oceania)",
        ),
    ),
    ApplicationField(id="why", label="Why do you want to join?", type="textarea"),
    ApplicationField(id="experience", label="SMP Experience", type="textarea"),
)


def _flag(data: Mapping[str, Any], key: str, field_id: str) -> bool:
    value = data.get(key, True)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} on {field_id} must be true or false", fields=(field_id,))
    return value


def field_from_dict(data: Mapping[str, Any]) -> ApplicationField:
    """Build an :class:`ApplicationField` from raw mapping data."""

    field_id = str(data.get("id") or "").strip()
    if not _ALLOWED_FIELD_ID.fullmatch(field_id):
        raise ValidationError(
            "Field ids may only contain letters, numbers, underscores, or hyphens",
            fields=("id",),
        )
    label = str(data.get("label") or "").strip()
    if not label:
        raise ValidationError(f"Field {field_id} needs a label", fields=(field_id,))
    field_type = str(data.get("type") or "text").strip()
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"Unsupported field type: {field_type}", fields=(field_id,))

    options: Tuple[str, ...] = ()
    raw_options = data.get("options")
    if raw_options:
        if not isinstance(raw_options, (list, tuple)):
            raise ValidationError(f"Options for {field_id} must be a list", fields=(field_id,))
        options = tuple(str(option).strip() for option in raw_options if str(option).strip())
    if field_type == "select" and not options:
        raise ValidationError(f"Select field {field_id} needs at least one option", fields=(field_id,))

    placeholder = data.get("placeholder")
    return ApplicationField(
        id=field_id,
        label=label,
        type=field_type,
        required=_flag(data, "required", field_id),
        enabled=_flag(data, "enabled", field_id),
        placeholder=str(placeholder) if placeholder else None,
        options=options,
    )


class ContentStore:
    """Opaque key-value content with JSON values; last write wins."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def get(self, key: str, default: Any = None) -> Any:
        value = self._database.get_content(key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        if not _ALLOWED_CONTENT_KEY.fullmatch(key or ""):
            raise ValidationError("Invalid content key", fields=("key",))
        if key == APPLICATION_FIELDS_KEY:
            self.save_application_fields(value or [])
            return
        self._database.set_content(key, value)

    def application_fields(self) -> List[ApplicationField]:
        raw = self._database.get_content(APPLICATION_FIELDS_KEY)
        if not raw:
            return list(DEFAULT_APPLICATION_FIELDS)
        return [field_from_dict(item) for item in raw]

    def save_application_fields(
        self,
        fields: Iterable[ApplicationField | Mapping[str, Any]],
    ) -> List[ApplicationField]:
        parsed: List[ApplicationField] = []
        seen: set[str] = set()
        for item in fields:
            if isinstance(item, ApplicationField):
                field = item
            elif isinstance(item, Mapping):
                field = field_from_dict(item)
            else:
                raise ValidationError("Field definitions must be mappings")
            if field.id in seen:
                raise ValidationError(f"Duplicate field id: {field.id}", fields=(field.id,))
            seen.add(field.id)
            parsed.append(field)
        self._database.set_content(APPLICATION_FIELDS_KEY, [field.to_dict() for field in parsed])
        return parsed


__all__ = [
    "APPLICATION_FIELDS_KEY",
    "ContentStore",
    "DEFAULT_APPLICATION_FIELDS",
    "FIELD_TYPES",
    "field_from_dict",
]
