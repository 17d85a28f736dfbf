"""Game Session Service.

Issues PIN-gated, child-scoped session tokens for the companion game and
validates them on every game request.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.clock import utcnow
from guardian.core.exceptions import Forbidden, NotFound, Unauthorized
from guardian.core.security import password_hasher
from guardian.domain import pin_gate
from guardian.domain.pin_gate import Hasher
from guardian.models.child import Child
from guardian.models.enums import ChildPermission
from guardian.models.game_session import GameSession
from guardian.models.user import User
from guardian.services import authorization_service
from guardian.services.event_bus import GAME_SESSION_ISSUED, DomainEvent, event_bus

logger = logging.getLogger(__name__)


async def terminate_sessions_for_child(db: AsyncSession, child_id: uuid.UUID) -> int:
    """Deactivate every active session of the child. Returns the count."""
    result = await db.execute(
        update(GameSession)
        .where(GameSession.child_id == child_id, GameSession.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


async def create_session(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> GameSession:
    """Issue a session after the caller verified the PIN.

    Any other active session of the child is terminated first, so a child
    has at most one live game session.
    """
    child = await db.get(Child, child_id)
    if child is None or child.is_deleted:
        raise NotFound("Child not found", child_id=str(child_id))
    if await db.get(User, user_id) is None:
        raise NotFound("User not found", user_id=str(user_id))

    if not await authorization_service.has_permission(
        db, child_id, user_id, ChildPermission.PLAY_GAME,
    ):
        logger.warning("Game session for child %s refused for user %s", child_id, user_id)
        raise Forbidden("Missing permission PLAY_GAME", child_id=str(child_id))

    await terminate_sessions_for_child(db, child_id)

    session = GameSession.issue(child_id, user_id, now=now)
    db.add(session)
    await db.flush()

    logger.info("Game session %s issued for child %s by %s", session.id, child_id, user_id)
    event_bus.publish(DomainEvent(
        GAME_SESSION_ISSUED, child_id, user_id, {"session_id": str(session.id)},
    ))
    return session


async def verify_pin_and_create_session(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    pin: str | None,
    hasher: Hasher = password_hasher,
) -> GameSession:
    auth = await authorization_service.require_access(db, child_id, user_id)
    if not pin_gate.verify_pin(auth.child, pin, hasher):
        logger.warning("Game session for child %s refused: PIN mismatch", child_id)
        raise Unauthorized("PIN verification failed", child_id=str(child_id))
    return await create_session(db, child_id, user_id)


async def _get_by_token(db: AsyncSession, token: str | None) -> GameSession | None:
    if not token:
        return None
    result = await db.execute(select(GameSession).where(GameSession.session_token == token))
    return result.scalar_one_or_none()


async def validate_session(
    db: AsyncSession, token: str | None, now: datetime | None = None,
) -> GameSession:
    """Return the live session for ``token`` and record its use."""
    session = await _get_by_token(db, token)
    if session is None or not session.is_valid(now):
        logger.debug("Game session token rejected")
        raise Unauthorized("Invalid or expired game session")
    session.refresh(now)
    await db.flush()
    return session


async def refresh_session(
    db: AsyncSession, token: str, now: datetime | None = None,
) -> GameSession:
    session = await _get_by_token(db, token)
    if session is None:
        raise NotFound("Game session not found")
    session.refresh(now)
    await db.flush()
    return session


async def extend_session(
    db: AsyncSession, token: str, now: datetime | None = None,
) -> GameSession:
    session = await _get_by_token(db, token)
    if session is None:
        raise NotFound("Game session not found")
    session.extend(now)
    await db.flush()
    logger.info("Game session %s extended", session.id)
    return session


async def terminate_session(db: AsyncSession, token: str) -> None:
    session = await _get_by_token(db, token)
    if session is None:
        raise NotFound("Game session not found")
    session.terminate()
    await db.flush()
    logger.info("Game session %s terminated", session.id)


async def terminate_all_sessions_by_child(
    db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
) -> int:
    auth = await authorization_service.load_child_authorization(db, child_id)
    if not auth.is_primary_parent(user_id):
        raise Forbidden("Only the primary guardian can end all sessions", child_id=str(child_id))
    count = await terminate_sessions_for_child(db, child_id)
    logger.info("Terminated %d game sessions for child %s", count, child_id)
    return count


async def list_active_sessions_by_child(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> list[GameSession]:
    await authorization_service.require_access(db, child_id, user_id)
    now = now or utcnow()
    result = await db.execute(
        select(GameSession)
        .where(
            GameSession.child_id == child_id,
            GameSession.is_active.is_(True),
            GameSession.expires_at > now,
        )
        .order_by(GameSession.created_at.desc())
    )
    return list(result.scalars().all())


async def delete_expired_sessions(db: AsyncSession, now: datetime | None = None) -> int:
    """Remove sessions that expired more than the retention window ago."""
    cutoff = (now or utcnow()) - timedelta(days=settings.GAME_SESSION_RETENTION_DAYS)
    result = await db.execute(delete(GameSession).where(GameSession.expires_at < cutoff))
    logger.info("Deleted %d expired game sessions", result.rowcount)
    return result.rowcount
