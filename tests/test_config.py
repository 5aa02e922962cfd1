from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from portal.config import DEFAULT_OWNER_EMAIL, load_config


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml", environ={})

    assert config.database_path is None
    assert config.owner.email == DEFAULT_OWNER_EMAIL
    assert config.owner.uses_default_password
    assert config.session_ttl is None
    assert config.secure_cookies is True


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    path = tmp_path / "portal.yaml"
    path.write_text(
        "database_path: data/test.sqlite3\n"
        "owner:\n"
        "  email: Boss@Example.com\n"
        "  password: VerySecret123\n"
        "session:\n"
        "  ttl_hours: 12\n"
        "  secure_cookies: false\n",
        encoding="utf-8",
    )

    config = load_config(path, environ={})

    assert config.database_path == (tmp_path / "data" / "test.sqlite3").resolve()
    assert config.owner.email == "boss@example.com"
    assert not config.owner.uses_default_password
    assert config.session_ttl == timedelta(hours=12)
    assert config.secure_cookies is False


def test_environment_overrides_file(tmp_path: Path) -> None:
    path = tmp_path / "portal.yaml"
    path.write_text("owner:\n  email: boss@example.com\n", encoding="utf-8")

    config = load_config(
        path,
        environ={
            "PORTAL_OWNER_EMAIL": "Chief@Example.com",
            "PORTAL_DB_PATH": str(tmp_path / "env.sqlite3"),
            "PORTAL_SESSION_TTL_HOURS": "2",
            "PORTAL_SESSION_SECURE": "off",
        },
    )

    assert config.owner.email == "chief@example.com"
    assert config.database_path == (tmp_path / "env.sqlite3").resolve()
    assert config.session_ttl == timedelta(hours=2)
    assert config.secure_cookies is False


def test_invalid_documents_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "portal.yaml"
    path.write_text("- not\n- a mapping\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path, environ={})

    path.write_text("session:\n  ttl_hours: soon\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path, environ={})
