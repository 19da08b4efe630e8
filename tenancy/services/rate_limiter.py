"""Rate limiting for the public entry points, using the Token Bucket algorithm.

WHY THESE ENDPOINTS?
--------------------
Login, registration and invite previews are reachable without a session.
They are what a credential-stuffing script or an invite-token guesser
would hammer, and every login attempt costs an argon2 verification.
Routes behind a bearer token are not limited here; the caller is already
known and membership checks gate what they can reach.

HOW THE BUCKET WORKS
--------------------
Each client key owns a bucket holding up to ``capacity`` tokens.  The
bucket refills at ``refill_rate`` tokens per second and a request costs
one token.  An empty bucket rejects the request and reports how long
until the next token arrives (``retry_after``), which the API turns into
a ``Retry-After`` header on the 429.

  capacity=10, refill_rate=10/60
    -> a burst of 10 logins, then one every 6 seconds.

Real clients arrive in bursts (a page load fires several calls at once),
so a burst allowance matters more than a perfectly uniform rate.  The
state per key is two numbers: the token count and the time of the last
refill.  A refill is computed lazily on the next check instead of by a
timer.

KEYS AND SCOPES
---------------
Keys are ``<scope>:ip:<client address>``, so the login budget and the
registration budget of one address are counted separately.

TWO BACKENDS
------------
``InMemoryRateLimiter`` keeps buckets in a dict.  Each API process has
its own view, which is fine for a single process and for tests.
``RedisRateLimiter`` shares buckets across every API instance.  Its
refill-and-consume step runs as one Lua script, because Redis executes a
script without interleaving other commands; two separate GET/SET calls
would let concurrent requests spend the same token.

RELATION TO ACCOUNT LOCKOUT
---------------------------
This limiter is the per-client defence and runs first.  The lockout
guard is the per-identity one: it counts failed passwords for an email
no matter how many addresses they come from.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """Outcome of one check.

    retry_after: seconds until the next token is available (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    retry_after: float


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """capacity=10, refill_rate=0.17 means a burst of 10, then ~10/minute."""

    capacity: int = 60
    refill_rate: float = 1.0


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


class InMemoryRateLimiter:
    """Single-process buckets.  Each API process counts separately."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        # key -> (tokens_remaining, last_refill)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._clock = clock

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()

        if key not in self._buckets:
            self._buckets[key] = (config.capacity - 1, now)
            return RateLimitResult(
                allowed=True,
                remaining=config.capacity - 1,
                limit=config.capacity,
                retry_after=0,
            )

        tokens, last_refill = self._buckets[key]
        tokens = min(config.capacity, tokens + (now - last_refill) * config.refill_rate)

        if tokens >= 1:
            tokens -= 1
            self._buckets[key] = (tokens, now)
            return RateLimitResult(
                allowed=True,
                remaining=int(tokens),
                limit=config.capacity,
                retry_after=0,
            )

        self._buckets[key] = (tokens, now)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=config.capacity,
            retry_after=(1 - tokens) / config.refill_rate,
        )

    async def reset(self, key: str) -> None:
        self._buckets.pop(key, None)


class RedisRateLimiter:
    """Buckets shared by every API instance.

    The refill-and-consume step is a read-modify-write, so it runs as one
    Lua script; Redis executes scripts atomically.
    """

    # KEYS[1] = bucket key
    # ARGV = capacity, refill_rate, now (seconds)
    # returns {allowed (0/1), remaining, retry_after_ms}
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local ttl = math.ceil(capacity / refill_rate) + 60

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])

    if tokens == nil then
        tokens = capacity - 1
        redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
        redis.call('EXPIRE', key, ttl)
        return {1, tokens, 0}
    end

    tokens = math.min(capacity, tokens + (now - last_refill) * refill_rate)

    if tokens >= 1 then
        tokens = tokens - 1
        redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
        redis.call('EXPIRE', key, ttl)
        return {1, math.floor(tokens), 0}
    end

    redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
    return {0, 0, math.ceil((1 - tokens) / refill_rate * 1000)}
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = redis_client.register_script(self._LUA_SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, retry_after_ms = await self._script(
            keys=[f"ratelimit:{key}"],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=config.capacity,
            retry_after=retry_after_ms / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"ratelimit:{key}")
