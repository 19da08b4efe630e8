from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenancy.api.auth import router as auth_router
from tenancy.api.errors import install_error_handlers
from tenancy.api.health import router as health_router
from tenancy.api.invites import router as invites_router
from tenancy.api.members import router as members_router
from tenancy.api.metrics_endpoint import router as metrics_router
from tenancy.api.orgs import router as orgs_router
from tenancy.container import Container, build_container
from tenancy.core.config import Settings, load_settings
from tenancy.core.logging import setup_logging
from tenancy.middleware.metrics import MetricsMiddleware
from tenancy.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, *, container: Container | None = None
) -> FastAPI:
    """Build the ASGI app.  Tests pass a container wired to in-memory backends."""
    if container is None:
        settings = settings or load_settings()
        container = build_container(settings)
    settings = container.settings

    setup_logging(settings.log_level, json_format=settings.log_json)
    install_request_context_filter()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        await container.close()

    app = FastAPI(
        title="tenancy-service",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # last added runs first: RequestContext -> Metrics -> CORS -> route
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestContextMiddleware)

    install_error_handlers(app)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(orgs_router)
    app.include_router(members_router)
    app.include_router(invites_router)

    logger.info(
        "tenancy-service configured env=%s log_level=%s port=%d store=%s redis=%s",
        settings.app_env,
        settings.log_level,
        settings.port,
        "sql" if settings.database_url else "memory",
        "on" if settings.redis_url else "off",
    )
    return app


app = create_app()
