"""Account registration, authentication and administration."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from . import roles
from .config import OwnerConfig
from .database import (
    PASSWORD_MIN_LENGTH,
    Database,
    hash_password,
    normalize_email,
    verify_password,
)
from .errors import (
    AccountNotFound,
    DuplicateIdentity,
    Forbidden,
    InvalidCredential,
    ProtectedTarget,
    ValidationError,
)
from .models import (
    Account,
    AccountStatus,
    AuthMethod,
    Clock,
    Principal,
    Role,
    Session,
    utcnow,
)
from .sessions import SessionManager

logger = logging.getLogger("portal.accounts")

_MAX_DISPLAY_NAME_LENGTH = 64


@dataclass(frozen=True)
class AccountPatch:
    """Fields an administrator may change on another account.

    ``None`` leaves the field untouched.
    """

    display_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    status: Optional[AccountStatus] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.display_name is None
            and self.email is None
            and self.password is None
            and self.status is None
        )


def _new_account_id() -> str:
    return uuid.uuid4().hex


def _normalise_display_name(name: Optional[str]) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationError("Display name must not be empty", fields=("display_name",))
    if len(value) > _MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError("Display name is too long", fields=("display_name",))
    return value


def _normalise_email_field(email: Optional[str]) -> str:
    value = normalize_email(email)
    if not value or "@" not in value:
        raise ValidationError("A valid email address is required", fields=("email",))
    return value


def _check_password(password: Optional[str]) -> str:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long",
            fields=("password",),
        )
    return password


def _coerce_role(value: Role | str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {value}", fields=("role",)) from exc


def _coerce_status(value: AccountStatus | str) -> AccountStatus:
    try:
        return AccountStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown account status: {value}", fields=("status",)) from exc


def _guard_owner(actor: Principal, target: Account, action: str) -> None:
    if target.is_owner and actor.account_id != target.id:
        raise ProtectedTarget(f"Cannot {action} the owner account")


class AccountService:
    """Credential store operations layered over :class:`Database`."""

    def __init__(
        self,
        database: Database,
        sessions: SessionManager,
        *,
        owner: Optional[OwnerConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._database = database
        self._sessions = sessions
        self._owner = owner or OwnerConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    def ensure_owner(self) -> Account:
        """Return the owner account, creating the configured default if missing."""

        existing = self._database.get_owner()
        if existing is not None:
            return existing

        owner = Account(
            id=_new_account_id(),
            display_name=self._owner.display_name,
            auth_method=AuthMethod.EMAIL,
            email=self._owner.email,
            password_hash=hash_password(self._owner.password),
            role=Role.OWNER,
            status=AccountStatus.ACTIVE,
            created_at=self._clock(),
        )
        try:
            self._database.insert_account(owner)
        except DuplicateIdentity:
            # Another request bootstrapped the owner first.
            existing = self._database.get_owner()
            if existing is not None:
                return existing
            raise

        if self._owner.uses_default_password:
            logger.warning(
                "Created owner account %s with the default password; change it immediately",
                owner.email,
            )
        else:
            logger.info("Created owner account %s", owner.email)
        return owner

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------
    def register(
        self,
        *,
        display_name: Optional[str],
        method: AuthMethod = AuthMethod.EMAIL,
        email: Optional[str] = None,
        password: Optional[str] = None,
        provider_id: Optional[str] = None,
        provider_username: Optional[str] = None,
    ) -> Tuple[Account, Session]:
        """Create a ``user`` account and open a session for it.

        Email registrations are unique per address.  External-provider
        registrations are idempotent by provider id: repeating one returns the
        existing account with a fresh session.
        """

        self.ensure_owner()

        if method is AuthMethod.DISCORD:
            return self._register_external(
                provider_id=provider_id,
                provider_username=provider_username,
                display_name=display_name,
            )

        normalized_email = _normalise_email_field(email)
        name = _normalise_display_name(display_name)
        secret = _check_password(password)

        if self._database.get_account_by_email(normalized_email) is not None:
            raise DuplicateIdentity("An account with this email already exists")

        account = Account(
            id=_new_account_id(),
            display_name=name,
            auth_method=AuthMethod.EMAIL,
            email=normalized_email,
            password_hash=hash_password(secret),
            role=Role.USER,
            status=AccountStatus.ACTIVE,
            created_at=self._clock(),
        )
        try:
            self._database.insert_account(account)
        except DuplicateIdentity as exc:
            raise DuplicateIdentity("An account with this email already exists") from exc

        logger.info("Registered account %s via email", account.id)
        return account, self._sessions.create(account)

    def login(self, email: str, password: str) -> Tuple[Account, Session]:
        self.ensure_owner()

        account = self._database.get_account_by_email(email or "")
        if account is None:
            logger.warning("Login attempt for unknown email %s", normalize_email(email))
            raise AccountNotFound("No account found with this email")
        if not verify_password(password, account.password_hash):
            logger.warning("Failed login attempt for account %s", account.id)
            raise InvalidCredential("Incorrect password")
        if account.is_banned:
            logger.warning("Banned account %s attempted to sign in", account.id)
            raise Forbidden("This account has been banned")

        logger.info("Account %s signed in", account.id)
        return account, self._sessions.create(account)

    def login_via_external_provider(
        self,
        provider_id: str,
        provider_username: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Tuple[Account, Session]:
        return self.register(
            display_name=display_name,
            method=AuthMethod.DISCORD,
            provider_id=provider_id,
            provider_username=provider_username,
        )

    def _register_external(
        self,
        *,
        provider_id: Optional[str],
        provider_username: Optional[str],
        display_name: Optional[str],
    ) -> Tuple[Account, Session]:
        identifier = (provider_id or "").strip()
        if not identifier:
            raise ValidationError("Provider identifier is required", fields=("provider_id",))

        existing = self._database.get_account_by_provider_id(identifier)
        if existing is None:
            name = _normalise_display_name(display_name or provider_username)
            account = Account(
                id=_new_account_id(),
                display_name=name,
                auth_method=AuthMethod.DISCORD,
                provider_id=identifier,
                provider_username=(provider_username or "").strip() or None,
                role=Role.USER,
                status=AccountStatus.ACTIVE,
                created_at=self._clock(),
            )
            try:
                self._database.insert_account(account)
                existing = account
                logger.info("Registered account %s via external provider", account.id)
            except DuplicateIdentity:
                existing = self._database.get_account_by_provider_id(identifier)
                if existing is None:
                    raise

        if existing.is_banned:
            logger.warning("Banned account %s attempted to sign in", existing.id)
            raise Forbidden("This account has been banned")
        return existing, self._sessions.create(existing)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def update_role(self, actor: Principal, target_id: str, new_role: Role | str) -> Account:
        if not roles.can_manage_roles(actor.role):
            raise Forbidden("You do not have permission to manage roles")
        role = _coerce_role(new_role)

        def mutate(target: Account) -> Account:
            if target.is_owner:
                raise ProtectedTarget("Cannot change the owner's role")
            if actor.role is Role.ADMIN and role in (Role.ADMIN, Role.OWNER):
                raise Forbidden("Admins can only assign Manager, Staff, Builder or Member roles")
            if role is Role.OWNER:
                raise Forbidden("The owner role cannot be assigned")
            return replace(target, role=role)

        updated = self._database.update_account(target_id, mutate)
        logger.info("Account %s set role of %s to %s", actor.account_id, target_id, role.value)
        return updated

    def update_password(self, actor: Principal, target_id: str, password: str) -> Account:
        return self.update_account(actor, target_id, AccountPatch(password=password))

    def update_profile(
        self,
        actor: Principal,
        target_id: str,
        *,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Account:
        return self.update_account(
            actor,
            target_id,
            AccountPatch(display_name=display_name, email=email),
        )

    def toggle_ban_status(self, actor: Principal, target_id: str) -> Account:
        if not roles.can_manage_roles(actor.role):
            raise Forbidden("You do not have permission to manage accounts")

        def mutate(target: Account) -> Account:
            _guard_owner(actor, target, "ban")
            if target.is_owner:
                raise ValidationError("The owner account cannot be banned", fields=("status",))
            status = AccountStatus.ACTIVE if target.is_banned else AccountStatus.BANNED
            return replace(target, status=status)

        updated = self._database.update_account(target_id, mutate)
        logger.info("Account %s set status of %s to %s", actor.account_id, target_id, updated.status.value)
        return updated

    def update_account(self, actor: Principal, target_id: str, patch: AccountPatch) -> Account:
        """Apply ``patch`` to the target account in one atomic update."""

        if not roles.can_manage_roles(actor.role):
            raise Forbidden("You do not have permission to manage accounts")

        display_name = _normalise_display_name(patch.display_name) if patch.display_name is not None else None
        email = _normalise_email_field(patch.email) if patch.email is not None else None
        password_hash = hash_password(_check_password(patch.password)) if patch.password is not None else None
        status = _coerce_status(patch.status) if patch.status is not None else None

        def mutate(target: Account) -> Account:
            _guard_owner(actor, target, "modify")
            if status is AccountStatus.BANNED and target.is_owner:
                raise ValidationError("The owner account cannot be banned", fields=("status",))
            updated = target
            if display_name is not None:
                updated = replace(updated, display_name=display_name)
            if email is not None:
                updated = replace(updated, email=email)
            if password_hash is not None:
                updated = replace(updated, password_hash=password_hash)
            if status is not None:
                updated = replace(updated, status=status)
            return updated

        updated = self._database.update_account(target_id, mutate)
        if not patch.is_empty:
            changed = [
                name
                for name in ("display_name", "email", "password", "status")
                if getattr(patch, name) is not None
            ]
            logger.info("Account %s updated %s on %s", actor.account_id, ", ".join(changed), target_id)
        return updated

    def delete_account(self, actor: Principal, target_id: str) -> Account:
        if not roles.can_manage_roles(actor.role):
            raise Forbidden("Only the owner can delete accounts")

        def guard(target: Account) -> None:
            # The owner is reported as protected even to admins.
            if target.is_owner:
                raise ProtectedTarget("Cannot delete the owner account")
            if not roles.can_delete_accounts(actor.role):
                raise Forbidden("Only the owner can delete accounts")

        deleted = self._database.delete_account(target_id, guard)
        self._sessions.destroy_for_account(target_id)
        logger.info("Account %s deleted account %s", actor.account_id, target_id)
        return deleted

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._database.get_account(account_id)

    def list_accounts(self, actor: Principal, query: Optional[str] = None) -> List[Account]:
        if not roles.can_access_admin_console(actor.role):
            raise Forbidden("You do not have access to the admin console")

        accounts = self._database.list_accounts()
        needle = (query or "").strip().lower()
        if not needle:
            return accounts
        return [
            account
            for account in accounts
            if any(
                needle in value.lower()
                for value in (account.display_name, account.email, account.provider_username)
                if value
            )
        ]


__all__ = ["AccountPatch", "AccountService"]
