from __future__ import annotations

import asyncio

import pytest

from tenancy.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig


class _Clock:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


def test_burst_up_to_capacity_then_reject(clock) -> None:
    limiter = InMemoryRateLimiter(clock=clock)
    config = RateLimitConfig(capacity=3, refill_rate=1.0)

    async def scenario():
        return [await limiter.check("ip:1", config) for _ in range(4)]

    results = asyncio.run(scenario())
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after == pytest.approx(1.0)
    assert results[3].limit == 3


def test_tokens_refill_over_time(clock) -> None:
    limiter = InMemoryRateLimiter(clock=clock)
    config = RateLimitConfig(capacity=2, refill_rate=0.5)

    async def drain():
        await limiter.check("k", config)
        await limiter.check("k", config)
        return await limiter.check("k", config)

    assert asyncio.run(drain()).allowed is False
    clock.t += 2.0
    assert asyncio.run(limiter.check("k", config)).allowed is True


def test_keys_are_independent_and_reset(clock) -> None:
    limiter = InMemoryRateLimiter(clock=clock)
    config = RateLimitConfig(capacity=1, refill_rate=0.01)

    async def scenario():
        a1 = await limiter.check("a", config)
        a2 = await limiter.check("a", config)
        b1 = await limiter.check("b", config)
        await limiter.reset("a")
        a3 = await limiter.check("a", config)
        return a1, a2, b1, a3

    a1, a2, b1, a3 = asyncio.run(scenario())
    assert (a1.allowed, a2.allowed, b1.allowed, a3.allowed) == (True, False, True, True)
