"""Domain models for the member portal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Roles an account can hold, from most to least privileged."""

    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    BUILDER = "builder"
    USER = "user"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"


class AuthMethod(str, Enum):
    EMAIL = "email"
    DISCORD = "discord"


class ApplicationStatus(str, Enum):
    """Review state of a submitted application."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class IntakeStatus(str, Enum):
    """Public status of the application intake."""

    OPEN = "open"
    CLOSED = "closed"
    COMING_SOON = "coming_soon"
    ENDING_SOON = "ending_soon"

    @property
    def accepting_submissions(self) -> bool:
        return self in (IntakeStatus.OPEN, IntakeStatus.ENDING_SOON)


@dataclass(frozen=True)
class Account:
    """Represents an account stored in the portal database."""

    id: str
    display_name: str
    auth_method: AuthMethod
    role: Role
    status: AccountStatus
    created_at: datetime
    email: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    provider_id: Optional[str] = None
    provider_username: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER

    @property
    def is_banned(self) -> bool:
        return self.status is AccountStatus.BANNED


@dataclass(frozen=True)
class Principal:
    """The authenticated identity performing an action."""

    account_id: str
    display_name: str
    role: Role
    auth_method: AuthMethod
    status: AccountStatus = AccountStatus.ACTIVE
    email: Optional[str] = None
    provider_username: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "Principal":
        return cls(
            account_id=account.id,
            display_name=account.display_name,
            role=account.role,
            auth_method=account.auth_method,
            status=account.status,
            email=account.email,
            provider_username=account.provider_username,
        )


@dataclass(frozen=True)
class Session:
    """A session token together with the principal it currently resolves to."""

    token: str
    principal: Principal
    issued_at: datetime
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class ApplicationEntry:
    """A membership application and its review state."""

    id: str
    user_id: str
    answers: Dict[str, str]
    status: ApplicationStatus
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    admin_message: Optional[str] = None


@dataclass(frozen=True)
class ApplicationField:
    """Definition of a single question on the application form."""

    id: str
    label: str
    type: str = "text"
    required: bool = True
    enabled: bool = True
    placeholder: Optional[str] = None
    options: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "required": self.required,
            "enabled": self.enabled,
        }
        if self.placeholder is not None:
            payload["placeholder"] = self.placeholder
        if self.options:
            payload["options"] = list(self.options)
        return payload


@dataclass(frozen=True)
class ScheduleState:
    """Manually set intake status plus the optional automatic boundaries."""

    status: IntakeStatus = IntakeStatus.OPEN
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None

    @property
    def accepting_submissions(self) -> bool:
        return self.status.accepting_submissions


@dataclass(frozen=True)
class ApplicationStats:
    total: int
    pending: int
    under_review: int
    approved: int
    rejected: int


__all__ = [
    "Account",
    "AccountStatus",
    "ApplicationEntry",
    "ApplicationField",
    "ApplicationStats",
    "ApplicationStatus",
    "AuthMethod",
    "Clock",
    "IntakeStatus",
    "Principal",
    "Role",
    "ScheduleState",
    "Session",
    "utcnow",
]
