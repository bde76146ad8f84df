"""Token-bucket rate limiting for the credential-handling endpoints.

A bucket holds up to `capacity` tokens and refills at `refill_rate`
tokens per second; each request spends one.  Bursts up to capacity pass,
the long-run rate is the refill rate.

Two backends share the RateLimiter protocol:
  InMemoryRateLimiter  per-process dict, used when REDIS_URL is unset
  RedisRateLimiter     one Lua script per check, shared by all replicas
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float  # seconds until the next token; 0 when allowed


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    capacity: int = 60
    refill_rate: float = 1.0  # tokens per second


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


@dataclass(slots=True)
class _Bucket:
    tokens: float
    updated_at: float


class InMemoryRateLimiter:
    """Buckets in a dict.  Each process counts separately."""

    def __init__(self, clock=time.monotonic) -> None:
        self._buckets: dict[str, _Bucket] = {}
        self._clock = clock

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(float(config.capacity), now)
        else:
            elapsed = now - bucket.updated_at
            bucket.tokens = min(config.capacity, bucket.tokens + elapsed * config.refill_rate)
            bucket.updated_at = now

        if bucket.tokens >= 1:
            bucket.tokens -= 1
            return RateLimitResult(
                allowed=True,
                remaining=int(bucket.tokens),
                limit=config.capacity,
                retry_after=0,
            )

        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=config.capacity,
            retry_after=(1 - bucket.tokens) / config.refill_rate,
        )

    async def reset(self, key: str) -> None:
        self._buckets.pop(key, None)

    def clear(self) -> None:
        self._buckets.clear()


class RedisRateLimiter:
    """Same bucket, kept in a Redis hash and updated atomically by a Lua script."""

    # KEYS[1] bucket key; ARGV capacity, refill_rate, now
    # returns {allowed (0/1), remaining, retry_after_ms}
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local ttl = math.ceil(capacity / refill_rate) + 60

    local bucket = redis.call('HMGET', key, 'tokens', 'updated_at')
    local tokens = tonumber(bucket[1])
    local updated_at = tonumber(bucket[2])

    if tokens == nil then
        tokens = capacity
    else
        tokens = math.min(capacity, tokens + (now - updated_at) * refill_rate)
    end

    local allowed = 0
    local retry_after_ms = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    else
        retry_after_ms = math.ceil((1 - tokens) / refill_rate * 1000)
    end

    redis.call('HSET', key, 'tokens', tokens, 'updated_at', now)
    redis.call('EXPIRE', key, ttl)
    return {allowed, math.floor(tokens), retry_after_ms}
    """

    def __init__(self, redis_client, prefix: str = "ratelimit:") -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._script = redis_client.register_script(self._LUA_SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, retry_after_ms = await self._script(
            keys=[self._prefix + key],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=config.capacity,
            retry_after=int(retry_after_ms) / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(self._prefix + key)
