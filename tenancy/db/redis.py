"""Redis client construction.

Redis backs the notification task queue and the shared rate-limit buckets.
Without REDIS_URL both fall back to in-process implementations and no
Redis server is needed.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


def build_redis(redis_url: str) -> aioredis.Redis:
    client = aioredis.from_url(
        redis_url,
        decode_responses=True,
        max_connections=20,
    )
    logger.info(
        "Redis client created host=%s",
        client.connection_pool.connection_kwargs.get("host", "?"),
    )
    return client
