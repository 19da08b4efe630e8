"""Rate limiting dependency for the unauthenticated routes.

Applied per route rather than as middleware so that only the public entry
points pay for it:

  POST /auth/login            10 burst, ~10/minute
  POST /auth/register          5 burst, ~5/minute
  GET  /invites/{token}/details 30 burst, ~30/minute

Callers are keyed by client IP; these routes have no session to key on.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from tenancy.core.errors import RateLimited
from tenancy.core.metrics import RATE_LIMIT_HITS
from tenancy.services.rate_limiter import RateLimitConfig

logger = logging.getLogger(__name__)

LOGIN_LIMIT = RateLimitConfig(capacity=10, refill_rate=10 / 60)
REGISTER_LIMIT = RateLimitConfig(capacity=5, refill_rate=5 / 60)
INVITE_PREVIEW_LIMIT = RateLimitConfig(capacity=30, refill_rate=30 / 60)


def require_rate_limit(config: RateLimitConfig, *, scope: str):
    """Dependency factory.  ``scope`` keeps each route's buckets separate."""

    async def _check(request: Request, response: Response) -> None:
        key = f"{scope}:{_client_key(request)}"
        result = await request.app.state.container.rate_limiter.check(key, config)

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)

        if not result.allowed:
            RATE_LIMIT_HITS.labels(key_type="ip").inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise RateLimited(
                "Too many requests, slow down",
                retry_after=result.retry_after,
                details={"retry_after_seconds": round(result.retry_after, 1)},
            )

    return _check


def _client_key(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
