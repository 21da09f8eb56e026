from fastapi import APIRouter, Request, Response, Depends
from sqlalchemy import select
from datetime import timedelta
from typing import Annotated

from mdrrmo_api.api.deps import (
    DbSession,
    CurrentUser,
    verify_password,
    create_access_token,
)
from mdrrmo_api.config import settings
from mdrrmo_api.exceptions import ForbiddenError, UnauthorizedError
from mdrrmo_api.models.user import User
from mdrrmo_api.schemas.auth import LoginRequest, TokenResponse, UserResponse
from mdrrmo_api.schemas.common import envelope
from mdrrmo_api.security.rate_limiter import LoginRateLimiter, client_key, get_login_rate_limiter

router = APIRouter()


@router.post("/login")
async def login(
    request: Request,
    response: Response,
    login_data: LoginRequest,
    db: DbSession,
    limiter: Annotated[LoginRateLimiter, Depends(get_login_rate_limiter)],
):
    """Authenticate user and return JWT token."""
    key = client_key(request.client.host if request.client else None)
    await limiter.check(key)

    result = await db.execute(select(User).where(User.email == login_data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        await limiter.record_failure(key)
        raise UnauthorizedError("Incorrect email or password")

    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    await limiter.reset(key)
    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )

    response.set_cookie(
        key="session",
        value=access_token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return envelope(TokenResponse(access_token=access_token).model_dump(), message="Login successful")


@router.post("/logout")
async def logout(response: Response):
    """Logout user by clearing session cookie."""
    response.delete_cookie(key="session")
    return envelope(message="Successfully logged out")


@router.get("/me")
async def get_current_user_info(current_user: CurrentUser):
    return envelope(UserResponse.model_validate(current_user).model_dump())
