"""Role hierarchy and capability checks."""

from __future__ import annotations

from typing import Dict, Tuple

from .models import Role

ROLE_RANKS: Dict[Role, int] = {
    Role.OWNER: 6,
    Role.ADMIN: 5,
    Role.MANAGER: 3,
    Role.STAFF: 2,
    Role.BUILDER: 2,
    Role.USER: 1,
}

ROLE_LABELS: Dict[Role, str] = {
    Role.OWNER: "Owner",
    Role.ADMIN: "Admin",
    Role.MANAGER: "Manager",
    Role.STAFF: "Staff",
    Role.BUILDER: "Builder",
    Role.USER: "Member",
}


def rank(role: Role) -> int:
    return ROLE_RANKS[role]


def can_access_admin_console(role: Role) -> bool:
    return rank(role) >= rank(Role.STAFF)


def can_review_applications(role: Role) -> bool:
    return rank(role) >= rank(Role.MANAGER)


def can_manage_roles(role: Role) -> bool:
    return rank(role) >= rank(Role.ADMIN)


def can_manage_site_settings(role: Role) -> bool:
    return rank(role) >= rank(Role.ADMIN)


def can_delete_accounts(role: Role) -> bool:
    # Only the single owner account, not "anything ranked at the top".
    return role is Role.OWNER


def role_label(role: Role) -> str:
    return ROLE_LABELS[role]


def assignable_roles(role: Role) -> Tuple[Role, ...]:
    """Return the roles ``role`` may hand out to other accounts."""

    if not can_manage_roles(role):
        return ()
    if role is Role.OWNER:
        excluded = {Role.OWNER}
    else:
        excluded = {Role.OWNER, Role.ADMIN}
    return tuple(candidate for candidate in Role if candidate not in excluded)


__all__ = [
    "ROLE_LABELS",
    "ROLE_RANKS",
    "assignable_roles",
    "can_access_admin_console",
    "can_delete_accounts",
    "can_manage_roles",
    "can_manage_site_settings",
    "can_review_applications",
    "rank",
    "role_label",
]
