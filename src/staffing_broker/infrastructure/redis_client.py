"""Redis client for cross-process coordination of the expiry sweeper.

Redis is optional: when it is unreachable at startup the app runs without it
and each process sweeps on its own. Sweeps are idempotent, so the lock only
saves duplicate work.

Usage:
    from staffing_broker.infrastructure.redis_client import get_redis_or_none, sweeper_lock

    async with sweeper_lock(get_redis_or_none()) as acquired:
        if acquired:
            await sweeper.sweep()
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from staffing_broker.config import get_settings
from staffing_broker.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

SWEEPER_LOCK_NAME = "staffing_broker:sweeper"

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis_or_none() -> aioredis.Redis | None:
    """Return the Redis client, or None when it was never initialized."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


@asynccontextmanager
async def sweeper_lock(client: aioredis.Redis | None) -> AsyncIterator[bool]:
    """Hold the cluster-wide sweeper lock for one tick.

    Yields True when this process should sweep. Without a client every
    process sweeps.
    """
    if client is None:
        yield True
        return

    settings = get_settings()
    lock = client.lock(
        SWEEPER_LOCK_NAME,
        timeout=settings.sweeper_lock_timeout_seconds,
        blocking=False,
    )
    try:
        acquired = await lock.acquire()
    except RedisError:
        logger.warning("sweeper.lock_unavailable")
        yield True
        return

    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                await lock.release()
            except LockError:
                # Lock expired while sweeping; another process may hold it now
                logger.warning("sweeper.lock_lost")
