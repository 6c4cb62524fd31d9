from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.jwt import decode_token
from src.core.auth.models import User
from src.core.auth.permissions import Permission, role_has_permission
from src.core.auth.service import AuthService
from src.core.database import get_db
from src.core.exceptions import AuthenticationError, AuthorizationError


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get current authenticated user from JWT token.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if not authorization:
        raise AuthenticationError("Authorization header required")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    payload = decode_token(token, token_type="access")
    user_id = int(payload["sub"])

    auth_service = AuthService(db)
    user = await auth_service.get_user_by_id(user_id)

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def require_permission(*permissions: Permission):
    """
    Dependency factory to require capabilities granted through the user's role.

    Usage:
        @router.post("/general-register")
        async def register(
            user: User = Depends(require_permission(Permission.GENERAL_REGISTER_CREATE))
        ):
            ...
    """

    async def permission_checker(
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not role_has_permission(current_user.role, *permissions):
            missing = ", ".join(p.value for p in permissions)
            raise AuthorizationError(f"Required permission: {missing}")
        return current_user

    return permission_checker


# Convenience dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
