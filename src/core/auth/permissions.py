"""Role -> permission mapping for capability checks."""
from enum import StrEnum

from src.core.auth.models import UserRole


class Permission(StrEnum):
    PARISHES_READ = "parishes.read"
    PARISHES_WRITE = "parishes.write"

    REGISTER_CONFIGURATIONS_READ = "register_configurations.read"
    REGISTER_CONFIGURATIONS_WRITE = "register_configurations.write"
    REGISTER_CONFIGURATIONS_DELETE = "register_configurations.delete"

    GENERAL_REGISTER_READ = "general_register.read"
    GENERAL_REGISTER_CREATE = "general_register.create"
    GENERAL_REGISTER_UPDATE = "general_register.update"
    GENERAL_REGISTER_RESOLVE_ANY = "general_register.resolve_any"
    GENERAL_REGISTER_EXPORT = "general_register.export"


_SECRETARY_PERMISSIONS = frozenset(
    {
        Permission.PARISHES_READ,
        Permission.REGISTER_CONFIGURATIONS_READ,
        Permission.GENERAL_REGISTER_READ,
        Permission.GENERAL_REGISTER_CREATE,
        Permission.GENERAL_REGISTER_UPDATE,
        Permission.GENERAL_REGISTER_EXPORT,
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[Permission]] = {
    UserRole.SUPER_ADMIN.value: frozenset(Permission),
    UserRole.ADMIN.value: frozenset(Permission),
    UserRole.SECRETARY.value: _SECRETARY_PERMISSIONS,
    UserRole.USER.value: frozenset(
        {
            Permission.PARISHES_READ,
            Permission.REGISTER_CONFIGURATIONS_READ,
            Permission.GENERAL_REGISTER_READ,
        }
    ),
}


def permissions_for_role(role: str) -> frozenset[Permission]:
    """Unknown roles get no permissions."""
    return ROLE_PERMISSIONS.get(role, frozenset())


def role_has_permission(role: str, *permissions: Permission) -> bool:
    """True if the role grants all of the given permissions."""
    granted = permissions_for_role(role)
    return all(p in granted for p in permissions)
