"""
Redis client used for distributed job locks.

Redis never holds seat counts: availability is always read from the
database. Every helper fails open, so with Redis down or disabled each
instance simply runs its own jobs and the per-row database claims keep
them correct.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import uuid4

import redis.asyncio as redis

from retreat_booking.core.config import get_settings
from retreat_booking.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None

# Delete the key only if we still own it
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

LOCK_PREFIX = "locks:jobs:"


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        try:
            await client.ping()
        except redis.RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            await client.aclose()
            return None
        _redis_client = client
        logger.info("redis_connected", url=settings.REDIS_URL)

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


@asynccontextmanager
async def job_lock(name: str, ttl_seconds: int) -> AsyncIterator[bool]:
    """
    Best-effort mutual exclusion for a scheduled job across instances.

    Yields True when this instance should run the job: it holds the lock,
    or Redis is unavailable (fail open). Yields False when another instance
    holds it.
    """
    client = await get_redis()
    if client is None:
        yield True
        return

    key = f"{LOCK_PREFIX}{name}"
    token = str(uuid4())
    try:
        acquired = await client.set(key, token, nx=True, ex=ttl_seconds)
    except redis.RedisError as e:
        logger.warning("job_lock_unavailable", job=name, error=str(e))
        yield True
        return

    if not acquired:
        logger.info("job_lock_held_elsewhere", job=name)
        yield False
        return

    try:
        yield True
    finally:
        try:
            await client.eval(RELEASE_SCRIPT, 1, key, token)
        except redis.RedisError as e:
            # Lock expires on its own after ttl_seconds
            logger.warning("job_lock_release_failed", job=name, error=str(e))
