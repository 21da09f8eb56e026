"""
FastAPI Dependencies

Provides dependency injection for database sessions, the cache client,
authentication, and authorization.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the primary auth method (SPA-friendly, no CSRF needed)
- Session cookies are supported but Bearer is preferred
"""

from typing import Annotated
from fastapi import Depends, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
import bcrypt
from datetime import datetime, timedelta
import logging

from mdrrmo_api.database import get_db
from mdrrmo_api.config import settings
from mdrrmo_api.exceptions import ForbiddenError, UnauthorizedError
from mdrrmo_api.models.user import User
from mdrrmo_api.security.rbac import Permission, has_permission, require_admin
from mdrrmo_api.services.cache_service import CacheService, get_cache_service

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT - primary auth method
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session_token: Annotated[str | None, Cookie(alias="session")] = None,
) -> User:
    """
    Get current user from JWT token or session cookie.

    SECURITY:
    - Bearer token is preferred (no CSRF vulnerability)
    - JWT payloads are NOT logged to prevent credential leakage
    """
    token = None
    auth_method = None

    if credentials:
        token = credentials.credentials
        auth_method = "bearer"
    elif session_token:
        token = session_token
        auth_method = "cookie"

    if not token:
        raise UnauthorizedError("Could not validate credentials")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError("Could not validate credentials")
        user_id = int(sub)
    except JWTError:
        logger.warning("JWT validation failed", extra={"auth_method": auth_method})
        raise UnauthorizedError("Could not validate credentials")
    except ValueError:
        logger.warning("Invalid token format", extra={"auth_method": auth_method})
        raise UnauthorizedError("Could not validate credentials")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthorizedError("Could not validate credentials")
    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    logger.debug(
        "User authenticated",
        extra={"user_id": user.id, "auth_method": auth_method}
    )
    return user


async def get_admin_user(
    current_user: Annotated[User, Depends(get_current_user)]
) -> User:
    """Authenticated user with the admin role; 403 otherwise."""
    require_admin(current_user)
    return current_user


def require_permission(permission: Permission):
    """
    Dependency factory for requiring a specific permission.

    Usage:
        @router.post("/import")
        async def import_workbook(
            current_user: Annotated[User, Depends(require_permission(Permission.IMPORT_INVENTORY))],
        ):
            ...
    """
    async def checker(current_user: Annotated[User, Depends(get_current_user)]) -> User:
        if not has_permission(current_user, permission):
            logger.warning(
                f"Permission denied: user {current_user.id} lacks {permission.value}",
                extra={"user_id": current_user.id, "permission": permission.value}
            )
            raise ForbiddenError(f"Permission denied: requires {permission.value}")
        return current_user
    return checker


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
Cache = Annotated[CacheService, Depends(get_cache_service)]
