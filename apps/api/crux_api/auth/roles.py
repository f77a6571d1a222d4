"""Closed role type and the single role-hierarchy check.

Every authorization decision in the service goes through has_access();
no module compares role strings directly.

Hierarchy:
    super_admin  satisfies super_admin, tenant_admin, user
    tenant_admin satisfies tenant_admin, user
    user         satisfies user
    None/unknown satisfies nothing
"""

from enum import Enum
from typing import Optional, Union


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    USER = "user"


_RANK = {
    Role.USER: 1,
    Role.TENANT_ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}

# Roles that must be bound to a tenant once active
TENANT_ROLES = frozenset({Role.TENANT_ADMIN, Role.USER})

# Roles an invitation may grant
INVITABLE_ROLES = frozenset({Role.TENANT_ADMIN, Role.USER})

RoleLike = Union[Role, str, None]


def parse_role(value: RoleLike) -> Optional[Role]:
    """Return the Role for value, or None for anything unknown."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def has_access(role: RoleLike, required: RoleLike) -> bool:
    """True when role satisfies the required role under the hierarchy."""
    actual = parse_role(role)
    needed = parse_role(required)
    if actual is None or needed is None:
        return False
    return _RANK[actual] >= _RANK[needed]


def landing_path(role: RoleLike, public_entry: str = "/") -> str:
    """Role-specific page a signed-in user is sent to."""
    actual = parse_role(role)
    if actual is None:
        return public_entry
    if has_access(actual, Role.SUPER_ADMIN):
        return "/master"
    return "/dashboard"


# Landing pages and the role each one requires
LANDING_REQUIREMENTS = {
    "/master": Role.SUPER_ADMIN,
    "/dashboard": Role.USER,
}


def is_platform_admin(role: RoleLike) -> bool:
    """Platform-wide access (may act on any tenant)."""
    return has_access(role, Role.SUPER_ADMIN)
