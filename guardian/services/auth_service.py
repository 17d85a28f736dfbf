"""Authentication flows: register, login, refresh, logout."""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.exceptions import InvariantViolation, Unauthorized
from guardian.core.security import (
    create_access_token,
    create_refresh_token,
    get_password_hash,
    verify_password,
)
from guardian.domain.principal import Principal
from guardian.models.enums import UserRole
from guardian.models.user import User, normalize_email, validate_name
from guardian.services import refresh_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    user: User


def _resolve_role(role: str | None) -> UserRole:
    if not role:
        return UserRole.PENDING
    try:
        return UserRole.of(role)
    except ValueError:
        logger.info("Unknown role %r requested at registration, using PENDING", role)
        return UserRole.PENDING


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def is_email_available(db: AsyncSession, email: str) -> bool:
    return await get_user_by_email(db, email) is None


async def issue_tokens(db: AsyncSession, user: User) -> TokenPair:
    """Sign a fresh access credential and replace the stored refresh secret."""
    access_token = create_access_token(Principal.from_user(user).to_claims())
    refresh_token = create_refresh_token(str(user.id))
    await refresh_tokens.store_refresh_credential(db, user.id, refresh_token)
    return TokenPair(access_token=access_token, refresh_token=refresh_token, user=user)


async def register(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    role: str | None = None,
) -> User:
    if not await is_email_available(db, email):
        raise InvariantViolation("Email already registered", email=normalize_email(email))

    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=get_password_hash(password),
        name=validate_name(name),
        roles={_resolve_role(role)},
    )
    db.add(user)
    await db.flush()
    logger.info("User registered: %s", user.id)
    return user


async def login(db: AsyncSession, email: str, password: str) -> TokenPair:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login attempt")
        raise Unauthorized("Invalid email or password")

    pair = await issue_tokens(db, user)
    logger.info("User logged in: %s", user.id)
    return pair


async def refresh(db: AsyncSession, presented: str | None) -> TokenPair:
    """Rotate-on-use: the presented secret is consumed and replaced."""
    user, new_secret = await refresh_tokens.rotate_refresh_credential(db, presented)
    access_token = create_access_token(Principal.from_user(user).to_claims())
    return TokenPair(access_token=access_token, refresh_token=new_secret, user=user)


async def logout(
    db: AsyncSession,
    presented: str | None = None,
    user_id: uuid.UUID | None = None,
) -> None:
    if user_id is not None:
        await refresh_tokens.revoke_refresh_credential(db, user_id)
    else:
        await refresh_tokens.revoke_by_presented_secret(db, presented)
