from src.core.auth.models import UserRole
from src.core.auth.permissions import (
    Permission,
    permissions_for_role,
    role_has_permission,
)


class TestRolePermissions:
    """Tests for the role -> permission mapping."""

    def test_admins_have_every_permission(self):
        for role in (UserRole.SUPER_ADMIN, UserRole.ADMIN):
            assert permissions_for_role(role.value) == frozenset(Permission)

    def test_secretary_registers_but_cannot_manage_registers(self):
        role = UserRole.SECRETARY.value
        assert role_has_permission(role, Permission.GENERAL_REGISTER_CREATE)
        assert role_has_permission(role, Permission.GENERAL_REGISTER_EXPORT)
        assert not role_has_permission(role, Permission.REGISTER_CONFIGURATIONS_WRITE)
        assert not role_has_permission(role, Permission.GENERAL_REGISTER_RESOLVE_ANY)

    def test_user_is_read_only(self):
        role = UserRole.USER.value
        assert role_has_permission(role, Permission.GENERAL_REGISTER_READ)
        assert not role_has_permission(role, Permission.GENERAL_REGISTER_CREATE)

    def test_all_permissions_must_be_granted(self):
        assert not role_has_permission(
            UserRole.SECRETARY.value,
            Permission.GENERAL_REGISTER_READ,
            Permission.REGISTER_CONFIGURATIONS_DELETE,
        )

    def test_unknown_role_has_no_permissions(self):
        assert permissions_for_role("Sacristan") == frozenset()
        assert not role_has_permission("Sacristan", Permission.PARISHES_READ)
