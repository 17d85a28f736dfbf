from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.exceptions import CredentialError, Forbidden, Unauthorized
from guardian.core.security import decode_access_token
from guardian.database import get_db
from guardian.domain.principal import Principal
from guardian.models.enums import UserRole
from guardian.models.game_session import GameSession
from guardian.models.user import User
from guardian.services.game_session_service import validate_session

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_PREFIX}/auth/login")

GAME_SESSION_SCHEME = "GameSession"


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Verify the bearer credential and project its claims.

    Raises:
        HTTPException 401: If the token is malformed, expired, badly signed
            or lacks a required claim.
    """
    try:
        return Principal.from_claims(decode_access_token(token))
    except CredentialError:
        raise _credentials_exception()


async def get_current_user(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Return the User ORM instance behind the bearer credential."""
    user = await db.get(User, principal.user_id)
    if user is None:
        raise _credentials_exception()
    return user


def require_role(*roles: UserRole):
    """Factory for a dependency that admits users holding any of ``roles``.

    Usage::

        @router.get("/users")
        async def list_users(admin: User = Depends(require_role(UserRole.ADMIN))):
            ...
    """

    async def _check_role(current_user: Annotated[User, Depends(get_current_user)]) -> User:
        if not any(current_user.has_role(role) for role in roles):
            raise Forbidden(
                "Role required: " + ", ".join(role.value for role in roles),
                user_id=str(current_user.id),
            )
        return current_user

    return _check_role


async def get_game_session_token(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Token from ``Authorization: GameSession <token>``, not yet checked."""
    if not authorization:
        raise Unauthorized("Game session required")
    scheme, _, token = authorization.partition(" ")
    if scheme != GAME_SESSION_SCHEME or not token.strip():
        raise Unauthorized("Game session required")
    return token.strip()


async def get_game_session(
    db: Annotated[AsyncSession, Depends(get_db)],
    token: Annotated[str, Depends(get_game_session_token)],
) -> GameSession:
    """Resolve the game session header to a live session."""
    return await validate_session(db, token)
