"""Role hierarchy and landing paths."""

import pytest

from crux_api.auth.roles import Role, has_access, is_platform_admin, landing_path, parse_role

ROLES = [Role.SUPER_ADMIN, Role.TENANT_ADMIN, Role.USER]

# (actual, required) → allowed
EXPECTED = {
    (Role.SUPER_ADMIN, Role.SUPER_ADMIN): True,
    (Role.SUPER_ADMIN, Role.TENANT_ADMIN): True,
    (Role.SUPER_ADMIN, Role.USER): True,
    (Role.TENANT_ADMIN, Role.SUPER_ADMIN): False,
    (Role.TENANT_ADMIN, Role.TENANT_ADMIN): True,
    (Role.TENANT_ADMIN, Role.USER): True,
    (Role.USER, Role.SUPER_ADMIN): False,
    (Role.USER, Role.TENANT_ADMIN): False,
    (Role.USER, Role.USER): True,
}


@pytest.mark.parametrize("actual", ROLES)
@pytest.mark.parametrize("required", ROLES)
def test_hierarchy_matrix(actual: Role, required: Role) -> None:
    assert has_access(actual, required) is EXPECTED[(actual, required)]


@pytest.mark.parametrize("required", ROLES)
@pytest.mark.parametrize("actual", [None, "", "owner", "ADMIN", 3])
def test_missing_or_unknown_role_satisfies_nothing(actual, required: Role) -> None:
    assert has_access(actual, required) is False


def test_string_roles_are_parsed() -> None:
    assert has_access("tenant_admin", "user") is True
    assert has_access(" Super_Admin ", Role.TENANT_ADMIN) is True
    assert has_access("user", "bogus") is False
    assert parse_role("nope") is None


def test_landing_paths() -> None:
    assert landing_path(Role.SUPER_ADMIN) == "/master"
    assert landing_path(Role.TENANT_ADMIN) == "/dashboard"
    assert landing_path("user") == "/dashboard"
    assert landing_path(None, public_entry="/welcome") == "/welcome"


def test_platform_admin_is_super_admin_only() -> None:
    assert is_platform_admin("super_admin")
    assert not is_platform_admin("tenant_admin")
    assert not is_platform_admin(None)
