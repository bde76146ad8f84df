"""Rate limiting as a route dependency.

Only the routes that take credentials declare it:

  POST /oauth/login, /oauth/register   password guessing
  POST /token                          code / refresh token guessing
  POST /register                       client registration spam

Buckets are keyed by endpoint and client IP.  The limiter backend lives on
app.state.rate_limiter (Redis when configured, else process memory).
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status
from redis.exceptions import RedisError

from oauth_server.core.metrics import RATE_LIMIT_HITS
from oauth_server.services.rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)

# ~10 attempts a minute after a burst of 10
LOGIN_LIMIT = RateLimitConfig(capacity=10, refill_rate=0.17)
TOKEN_LIMIT = RateLimitConfig(capacity=30, refill_rate=1.0)
REGISTER_CLIENT_LIMIT = RateLimitConfig(capacity=20, refill_rate=0.2)


def require_rate_limit(name: str, config: RateLimitConfig):
    """Dependency factory: spend one token from the (name, client IP) bucket."""

    async def _check(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        key = f"{name}:{_client_ip(request)}"
        try:
            result = await limiter.check(key, config)
        except RedisError:
            # fail open
            logger.exception("Rate limit check failed key=%s", key)
            return

        if not result.allowed:
            RATE_LIMIT_HITS.labels(endpoint=name).inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers={
                    "Retry-After": str(int(result.retry_after) + 1),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
