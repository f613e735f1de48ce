"""Redis connection management.

Redis only backs the recalculation task queue.  Like engine.py, the client
exists only when REDIS_URL is configured; otherwise ``redis_pool`` is None
and the queue falls back to an in-process list.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from progression.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify connectivity on startup and close the pool on shutdown.

    A failed ping is logged, not raised: the API keeps serving and
    recalculations run inline until Redis is reachable again.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, task queue runs in-process")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
