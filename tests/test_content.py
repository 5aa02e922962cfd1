from __future__ import annotations

from pathlib import Path

import pytest

from portal.content import APPLICATION_FIELDS_KEY, DEFAULT_APPLICATION_FIELDS, ContentStore
from portal.database import Database
from portal.errors import ValidationError
from portal.models import ApplicationField


@pytest.fixture()
def store(tmp_path: Path) -> ContentStore:
    db = Database(tmp_path / "portal.sqlite3")
    db.initialize()
    return ContentStore(db)


def test_defaults_until_fields_are_saved(store: ContentStore) -> None:
    assert store.application_fields() == list(DEFAULT_APPLICATION_FIELDS)

    saved = store.save_application_fields(
        [
            {"id": "ign", "label": "In-game name"},
            ApplicationField(id="bio", label="About you", type="textarea", required=False),
        ]
    )

    assert [field.id for field in saved] == ["ign", "bio"]
    assert store.application_fields() == saved


def test_field_definitions_are_validated(store: ContentStore) -> None:
    with pytest.raises(ValidationError):
        store.save_application_fields([{"id": "has space", "label": "Bad"}])
    with pytest.raises(ValidationError):
        store.save_application_fields([{"id": "colour", "label": "Colour", "type": "select"}])
    with pytest.raises(ValidationError):
        store.save_application_fields([{"id": "a", "label": "A"}, {"id": "a", "label": "Again"}])


def test_generic_content_is_last_write_wins(store: ContentStore) -> None:
    assert store.get("hero_title", "Welcome") == "Welcome"
    store.set("hero_title", "Season 4")
    store.set("hero_title", "Season 5")
    assert store.get("hero_title") == "Season 5"

    with pytest.raises(ValidationError):
        store.set("../etc", "nope")


def test_setting_fields_key_goes_through_validation(store: ContentStore) -> None:
    with pytest.raises(ValidationError):
        store.set(APPLICATION_FIELDS_KEY, [{"id": "", "label": "Nameless"}])


def test_options_must_be_a_list(store: ContentStore) -> None:
    for options in (5, "red,green"):
        with pytest.raises(ValidationError):
            store.save_application_fields([{"id": "colour", "label": "Colour", "type": "select", "options": options}])


def test_flags_must_be_booleans(store: ContentStore) -> None:
    with pytest.raises(ValidationError):
        store.save_application_fields([{"id": "bio", "label": "Bio", "required": "false"}])
    with pytest.raises(ValidationError):
        store.save_application_fields([{"id": "bio", "label": "Bio", "enabled": 0}])

    saved = store.save_application_fields([{"id": "bio", "label": "Bio", "required": False}])
    assert saved[0].required is False
    assert saved[0].enabled is True
