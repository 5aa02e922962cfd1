"""Core utilities for the member portal."""

from __future__ import annotations

from typing import Any

from .core import Portal
from .database import Database, resolve_database_path


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the portal HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "Portal",
    "resolve_database_path",
    "create_app",
]
