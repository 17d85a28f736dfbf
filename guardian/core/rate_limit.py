"""Shared rate limiter for the credential endpoints.

Counters live in Redis when it answers a ping at import time, so limits
hold across workers. Otherwise they are kept in process memory (development
and tests).
"""

import logging

import redis as sync_redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from guardian.config import settings

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = "100/minute"
# Login, refresh and PIN attempts
CREDENTIAL_LIMIT = "10/minute"


def _create_limiter() -> Limiter:
    try:
        client = sync_redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        client.ping()
        client.close()
    except (sync_redis.RedisError, ValueError):
        logger.warning("Rate limiter: Redis unavailable, using in-memory storage")
        return Limiter(key_func=get_remote_address, default_limits=[DEFAULT_LIMIT])

    logger.info("Rate limiter: Redis storage")
    return Limiter(
        key_func=get_remote_address,
        default_limits=[DEFAULT_LIMIT],
        storage_uri=settings.REDIS_URL,
    )


limiter = _create_limiter()
