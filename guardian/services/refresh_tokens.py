"""Refresh credential store.

One row per user holds the SHA-256 digest of the current refresh JWT. A
refresh that presents anything other than the stored, unexpired secret is
refused without touching the row, so a stolen secret cannot race a
legitimate rotation.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.clock import utcnow
from guardian.core.exceptions import CredentialError, Unauthorized
from guardian.core.security import create_refresh_token, decode_refresh_token
from guardian.models.user import RefreshToken, User

logger = logging.getLogger(__name__)


async def store_refresh_credential(
    db: AsyncSession,
    user_id: uuid.UUID,
    secret: str,
    now: datetime | None = None,
) -> RefreshToken:
    """Create or replace the user's refresh credential (login)."""
    now = now or utcnow()
    row = await db.get(RefreshToken, user_id, with_for_update=True)
    if row is None:
        row = RefreshToken.issue(
            user_id, secret, settings.REFRESH_TOKEN_EXPIRE_MINUTES, now=now,
        )
        db.add(row)
    else:
        row.rotate(secret, settings.REFRESH_TOKEN_EXPIRE_MINUTES, now=now)
    await db.flush()
    return row


async def rotate_refresh_credential(
    db: AsyncSession,
    presented: str | None,
    now: datetime | None = None,
) -> tuple[User, str]:
    """Swap the presented refresh secret for a new one.

    Returns the owning user and the new secret. Raises ``Unauthorized``
    (with a generic message) for an unverifiable, unknown, expired or
    superseded secret; the stored row is never modified in that case.
    """
    if not presented:
        raise Unauthorized("Invalid refresh credential")
    now = now or utcnow()

    try:
        claims = decode_refresh_token(presented)
        user_id = uuid.UUID(claims["userId"])
    except (CredentialError, ValueError) as exc:
        logger.warning("Refresh refused: credential failed verification (%s)", type(exc).__name__)
        raise Unauthorized("Invalid refresh credential") from exc

    # Row lock makes compare-and-overwrite atomic per user
    row = await db.get(RefreshToken, user_id, with_for_update=True, populate_existing=True)
    if row is None or row.is_expired(now) or not row.matches(presented):
        logger.warning("Refresh refused for user %s: stale or unknown secret", user_id)
        raise Unauthorized("Invalid refresh credential")

    user = await db.get(User, user_id)
    if user is None:
        raise Unauthorized("Invalid refresh credential")

    new_secret = create_refresh_token(str(user_id))
    row.rotate(new_secret, settings.REFRESH_TOKEN_EXPIRE_MINUTES, now=now)
    await db.flush()
    logger.info("Refresh credential rotated for user %s", user_id)
    return user, new_secret


async def revoke_refresh_credential(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    if result.rowcount:
        logger.info("Refresh credential revoked for user %s", user_id)
    return bool(result.rowcount)


async def revoke_by_presented_secret(db: AsyncSession, presented: str | None) -> bool:
    """Logout path when only the cookie is known.

    Unverifiable or superseded secrets are ignored so logout stays
    idempotent.
    """
    if not presented:
        return False
    try:
        claims = decode_refresh_token(presented)
        user_id = uuid.UUID(claims["userId"])
    except (CredentialError, ValueError):
        return False

    row = await db.get(RefreshToken, user_id)
    if row is None or not row.matches(presented):
        return False
    return await revoke_refresh_credential(db, user_id)


async def get_refresh_credential(db: AsyncSession, user_id: uuid.UUID) -> RefreshToken | None:
    result = await db.execute(select(RefreshToken).where(RefreshToken.user_id == user_id))
    return result.scalar_one_or_none()


# ── Sweeps ───────────────────────────────────────────────────────────────────


async def delete_expired_refresh_credentials(
    db: AsyncSession, now: datetime | None = None,
) -> int:
    now = now or utcnow()
    result = await db.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
    logger.info("Deleted %d expired refresh credentials", result.rowcount)
    return result.rowcount


async def delete_stale_refresh_credentials(
    db: AsyncSession, now: datetime | None = None,
) -> int:
    """Drop rows not rotated for ``REFRESH_STALE_DAYS``."""
    cutoff = (now or utcnow()) - timedelta(days=settings.REFRESH_STALE_DAYS)
    result = await db.execute(delete(RefreshToken).where(RefreshToken.updated_at < cutoff))
    logger.info("Deleted %d stale refresh credentials", result.rowcount)
    return result.rowcount
