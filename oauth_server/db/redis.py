"""Optional Redis connection, used as the shared rate-limit store.

OAuth state never lives in Redis; it belongs to the database.  Redis only
holds rate-limit buckets so that every replica counts against the same
bucket.  Without REDIS_URL the rate limiter falls back to process memory.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def create_redis(url: str | None) -> aioredis.Redis | None:  # type: ignore[type-arg]
    if not url:
        return None
    return aioredis.from_url(url, decode_responses=True, max_connections=20)


@asynccontextmanager
async def lifespan_redis(
    client: aioredis.Redis | None,  # type: ignore[type-arg]
) -> AsyncIterator[None]:
    """Ping on startup, close the pool on shutdown.

    An unreachable Redis is logged, not fatal: rate limit checks will fail
    per request until it comes back.
    """
    if client is None:
        logger.info("No REDIS_URL configured; rate limiting uses process memory")
        yield
        return

    try:
        await client.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except (RedisError, OSError):
        logger.exception("Redis connection failed on startup")

    try:
        yield
    finally:
        await client.aclose()
        logger.info("Redis connection pool closed")
