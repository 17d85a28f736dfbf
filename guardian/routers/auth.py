"""Authentication router.

Endpoints for registration, login, token refresh and logout. The refresh
secret is only ever sent as an HTTP-only cookie.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.dependencies import get_current_user
from guardian.core.rate_limit import CREDENTIAL_LIMIT, limiter
from guardian.database import get_db
from guardian.models.user import User
from guardian.schemas.auth import (
    EmailAvailability,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
)
from guardian.schemas.user import UserResponse
from guardian.services import auth_service
from guardian.services.auth_service import TokenPair

router = APIRouter(prefix="/auth", tags=["Auth"])


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.REFRESH_COOKIE_MAX_AGE,
        path=settings.REFRESH_COOKIE_PATH,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=settings.REFRESH_COOKIE_HTTPONLY,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def _token_response(response: Response, pair: TokenPair) -> TokenResponse:
    _set_refresh_cookie(response, pair.refresh_token)
    return TokenResponse(access_token=pair.access_token, user_id=pair.user.id)


def user_view(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        roles=sorted(user.roles, key=lambda role: role.value),
        created_at=user.created_at,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(CREDENTIAL_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create an account. Unknown role names register as PENDING."""
    user = await auth_service.register(db, body.email, body.password, body.name, body.role)
    return user_view(user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Authenticate with email + password; sets the refresh cookie."""
    pair = await auth_service.login(db, body.email, body.password)
    return _token_response(response, pair)


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def refresh(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Exchange the refresh cookie for a new access token (rotation)."""
    presented = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    pair = await auth_service.refresh(db, presented)
    return _token_response(response, pair)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await auth_service.logout(db, presented=request.cookies.get(settings.REFRESH_COOKIE_NAME))
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=settings.REFRESH_COOKIE_HTTPONLY,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
    return user_view(current_user)


@router.get("/email-available", response_model=EmailAvailability)
async def email_available(
    email: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return EmailAvailability(
        email=email, available=await auth_service.is_email_available(db, email),
    )
