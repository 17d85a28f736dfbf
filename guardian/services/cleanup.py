"""Daily hygiene sweeps.

The predicates live in the owning services; this only runs them together
so the scheduler and tests share one entry point.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.clock import utcnow
from guardian.services import game_session_service, refresh_tokens

logger = logging.getLogger(__name__)


async def run_cleanup(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    counts = {
        "expired_refresh_credentials": await refresh_tokens.delete_expired_refresh_credentials(db, now),
        "stale_refresh_credentials": await refresh_tokens.delete_stale_refresh_credentials(db, now),
        "expired_game_sessions": await game_session_service.delete_expired_sessions(db, now),
    }
    logger.info("Cleanup finished: %s", counts)
    return counts
