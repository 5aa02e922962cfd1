"""Error taxonomy for the portal core and the result wrapper used at its boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class PortalError(Exception):
    """Base class for every expected failure raised by the portal core."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Forbidden(PortalError):
    code = "forbidden"


class ProtectedTarget(PortalError):
    code = "protected_target"


class NotFound(PortalError):
    code = "not_found"


class DuplicateIdentity(PortalError):
    code = "duplicate_identity"


class InvalidCredential(PortalError):
    code = "invalid_credential"


class AccountNotFound(PortalError):
    code = "account_not_found"


class ValidationError(PortalError):
    code = "validation_error"

    def __init__(self, message: str = "", *, fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.fields = fields


class Unauthenticated(PortalError):
    code = "unauthenticated"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a portal operation: either a value or a typed error."""

    value: Optional[T] = None
    error: Optional[PortalError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


__all__ = [
    "AccountNotFound",
    "DuplicateIdentity",
    "Forbidden",
    "InvalidCredential",
    "NotFound",
    "PortalError",
    "ProtectedTarget",
    "Result",
    "Unauthenticated",
    "ValidationError",
]
