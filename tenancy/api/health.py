"""Liveness and readiness probes.

/health answers "is the process alive" and always returns 200; the body
reports each dependency so a degraded instance is visible without being
restarted.  /ready answers "can this instance take traffic" and returns 503
when the store, or a configured Redis, is unreachable.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from tenancy.api.dependencies import ContainerDep
from tenancy.container import Container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _checks(container: Container) -> dict[str, str]:
    checks: dict[str, str] = {}

    try:
        await container.store.ping()
        checks["store"] = "ok"
    except (SQLAlchemyError, OSError):
        logger.exception("Store health check failed")
        checks["store"] = "degraded"

    if container.redis is not None:
        try:
            await container.redis.ping()
            checks["redis"] = "ok"
        except (RedisError, OSError):
            logger.exception("Redis health check failed")
            checks["redis"] = "degraded"
    else:
        checks["redis"] = "not_configured"

    return checks


@router.get("/health")
async def health(container: ContainerDep) -> dict:
    checks = await _checks(container)
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(container: ContainerDep) -> JSONResponse:
    checks = await _checks(container)
    ready_ = "degraded" not in checks.values()
    return JSONResponse(
        status_code=200 if ready_ else 503,
        content={"ready": ready_, "checks": checks},
    )
