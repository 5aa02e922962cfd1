"""Configuration management for the member portal."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_OWNER_EMAIL = "owner@portal.local"
DEFAULT_OWNER_PASSWORD = "change-me-owner"
DEFAULT_OWNER_NAME = "Owner"


@dataclass(frozen=True)
class OwnerConfig:
    """Identity used to bootstrap the owner account when none exists."""

    email: str = DEFAULT_OWNER_EMAIL
    password: str = field(default=DEFAULT_OWNER_PASSWORD, repr=False)
    display_name: str = DEFAULT_OWNER_NAME

    @property
    def uses_default_password(self) -> bool:
        return self.password == DEFAULT_OWNER_PASSWORD

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "OwnerConfig":
        email = str(data.get("email") or DEFAULT_OWNER_EMAIL).strip().lower()
        password = str(data.get("password") or DEFAULT_OWNER_PASSWORD)
        display_name = str(data.get("display_name") or DEFAULT_OWNER_NAME).strip()
        if not email:
            raise ValueError("Owner email must not be empty")
        return OwnerConfig(email=email, password=password, display_name=display_name or DEFAULT_OWNER_NAME)


@dataclass(frozen=True)
class PortalConfig:
    """Runtime settings for the portal service."""

    database_path: Optional[Path] = None
    owner: OwnerConfig = field(default_factory=OwnerConfig)
    session_ttl: Optional[timedelta] = None
    secure_cookies: bool = True

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "PortalConfig":
        """Create a :class:`PortalConfig` from raw dictionary data."""

        raw_db = data.get("database_path")
        database_path: Optional[Path] = None
        if raw_db:
            candidate = Path(str(raw_db)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)

        owner_raw = data.get("owner") or {}
        if not isinstance(owner_raw, Mapping):
            raise ValueError("The 'owner' configuration entry must be a mapping")

        session_raw = data.get("session") or {}
        if not isinstance(session_raw, Mapping):
            raise ValueError("The 'session' configuration entry must be a mapping")

        return PortalConfig(
            database_path=database_path,
            owner=OwnerConfig.from_dict(owner_raw),
            session_ttl=_parse_ttl_hours(session_raw.get("ttl_hours")),
            secure_cookies=bool(session_raw.get("secure_cookies", True)),
        )


def _parse_ttl_hours(value: object) -> Optional[timedelta]:
    if value is None or value == "":
        return None
    try:
        hours = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid session TTL: {value!r}") from exc
    if hours <= 0:
        return None
    return timedelta(hours=hours)


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "portal.yaml").resolve(strict=False)
    return candidate


def load_config(config_path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None) -> PortalConfig:
    """Load settings from YAML (when present) and apply environment overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("PORTAL_CONFIG"))

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        config = PortalConfig.from_dict(raw, base_path=path.parent)
    else:
        config = PortalConfig()

    if env.get("PORTAL_DB_PATH"):
        config = replace(config, database_path=Path(env["PORTAL_DB_PATH"]).expanduser().resolve(strict=False))

    owner = config.owner
    if env.get("PORTAL_OWNER_EMAIL"):
        owner = replace(owner, email=env["PORTAL_OWNER_EMAIL"].strip().lower())
    if env.get("PORTAL_OWNER_PASSWORD"):
        owner = replace(owner, password=env["PORTAL_OWNER_PASSWORD"])
    config = replace(config, owner=owner)

    if env.get("PORTAL_SESSION_TTL_HOURS") is not None:
        config = replace(config, session_ttl=_parse_ttl_hours(env.get("PORTAL_SESSION_TTL_HOURS")))

    config = replace(
        config,
        secure_cookies=_env_flag(env.get("PORTAL_SESSION_SECURE"), config.secure_cookies),
    )
    return config


__all__ = ["OwnerConfig", "PortalConfig", "load_config", "resolve_config_path"]
