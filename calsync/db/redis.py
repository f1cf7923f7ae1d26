"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a connection
pool; when it is None (local dev, tests) the booking-status queue falls
back to an in-memory list and no Redis server is needed.

Redis carries exactly one thing here: status notifications from the
scheduling platform, pushed by the webhook endpoint and drained by the
worker.  Nothing durable lives in it; the bookings table remains the
record of truth and a lost notification is superseded by the next one.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from calsync.core.config import SETTINGS

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
    """Startup/shutdown hook for Redis — mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured — booking status queue is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Start anyway: webhooks will fail with 503 until Redis is back
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
