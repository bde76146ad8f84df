"""Token bucket behaviour of the in-process limiter."""

from __future__ import annotations

from oauth_server.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
)

CONFIG = RateLimitConfig(capacity=3, refill_rate=1.0)


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def test_burst_up_to_capacity_then_reject() -> None:
    limiter = InMemoryRateLimiter(clock=_Clock())
    results = [await limiter.check("k", CONFIG) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after == 1.0
    assert results[3].limit == 3


async def test_refills_over_time() -> None:
    clock = _Clock()
    limiter = InMemoryRateLimiter(clock=clock)
    for _ in range(3):
        await limiter.check("k", CONFIG)
    assert not (await limiter.check("k", CONFIG)).allowed

    clock.now += 1.0
    assert (await limiter.check("k", CONFIG)).allowed


async def test_keys_are_independent() -> None:
    limiter = InMemoryRateLimiter(clock=_Clock())
    for _ in range(3):
        await limiter.check("a", CONFIG)
    assert not (await limiter.check("a", CONFIG)).allowed
    assert (await limiter.check("b", CONFIG)).allowed


async def test_reset_restores_full_bucket() -> None:
    limiter = InMemoryRateLimiter(clock=_Clock())
    for _ in range(4):
        await limiter.check("k", CONFIG)
    await limiter.reset("k")
    assert (await limiter.check("k", CONFIG)).remaining == 2


def test_satisfies_protocol() -> None:
    assert isinstance(InMemoryRateLimiter(), RateLimiter)
