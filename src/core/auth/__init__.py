from src.core.auth.models import User, UserRole
from src.core.auth.permissions import Permission, ROLE_PERMISSIONS, role_has_permission
from src.core.auth.service import AuthService
from src.core.auth.jwt import create_access_token, create_refresh_token, decode_token
from src.core.auth.dependencies import get_current_user, require_permission

__all__ = [
    "User",
    "UserRole",
    "Permission",
    "ROLE_PERMISSIONS",
    "role_has_permission",
    "AuthService",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "get_current_user",
    "require_permission",
]
