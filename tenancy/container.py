"""Service wiring.

``build_container`` turns a Settings value into the object graph the API
and the worker use.  Backends are picked from configuration: PostgreSQL
when DATABASE_URL is set (in-memory store otherwise), Redis when REDIS_URL
is set (in-process queue and rate limiter otherwise).  Tests pass their own
store, queue or clock to override any of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import redis.asyncio as aioredis

from tenancy.core.clock import Clock, utcnow
from tenancy.core.config import Settings
from tenancy.db.engine import build_engine, build_session_factory
from tenancy.db.redis import build_redis
from tenancy.repos.memory_store import InMemoryStore
from tenancy.repos.pg_store import PgStore
from tenancy.repos.store import Store
from tenancy.services.auth_service import AuthService
from tenancy.services.invitation_manager import InvitationManager
from tenancy.services.lockout_guard import LockoutGuard
from tenancy.services.membership_store import MembershipStore
from tenancy.services.notifier import Notifier
from tenancy.services.organization_service import OrganizationService
from tenancy.services.ownership_transfer import OwnershipTransferCoordinator
from tenancy.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
)
from tenancy.services.task_queue import InMemoryTaskQueue, RedisTaskQueue, TaskQueue
from tenancy.services.token_service import TokenService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: Store
    task_queue: TaskQueue
    rate_limiter: RateLimiter
    tokens: TokenService
    notifier: Notifier
    lockout: LockoutGuard
    auth: AuthService
    orgs: OrganizationService
    transfers: OwnershipTransferCoordinator
    members: MembershipStore
    invites: InvitationManager
    redis: aioredis.Redis | None = None

    async def close(self) -> None:
        await self.store.close()
        if self.redis is not None:
            await self.redis.aclose()


def _build_store(settings: Settings) -> Store:
    if not settings.database_url:
        logger.info("DATABASE_URL not set; using in-memory store")
        return InMemoryStore()
    engine = build_engine(settings.database_url, echo=settings.log_level == "debug")
    return PgStore(engine, build_session_factory(engine))


def _build_tokens(settings: Settings) -> TokenService:
    if settings.jwt_private_key_file:
        return TokenService.from_pem(Path(settings.jwt_private_key_file).read_bytes())
    if settings.is_prod:
        logger.warning("JWT_PRIVATE_KEY_FILE not set; tokens use an ephemeral key")
    return TokenService()


def build_container(
    settings: Settings,
    *,
    store: Store | None = None,
    task_queue: TaskQueue | None = None,
    rate_limiter: RateLimiter | None = None,
    tokens: TokenService | None = None,
    redis_client: aioredis.Redis | None = None,
    clock: Clock = utcnow,
) -> Container:
    if redis_client is None and settings.redis_url:
        redis_client = build_redis(settings.redis_url)

    store = store or _build_store(settings)
    if task_queue is None:
        task_queue = (
            RedisTaskQueue(redis_client) if redis_client is not None else InMemoryTaskQueue()
        )
    if rate_limiter is None:
        rate_limiter = (
            RedisRateLimiter(redis_client)
            if redis_client is not None
            else InMemoryRateLimiter()
        )
    tokens = tokens or _build_tokens(settings)
    policy = settings.tenancy

    notifier = Notifier(task_queue, app_url=settings.app_url)
    lockout = LockoutGuard(
        store,
        max_attempts=settings.lockout_max_attempts,
        lockout_minutes=settings.lockout_minutes,
        clock=clock,
    )
    transfers = OwnershipTransferCoordinator(store, clock=clock)
    return Container(
        settings=settings,
        store=store,
        task_queue=task_queue,
        rate_limiter=rate_limiter,
        tokens=tokens,
        notifier=notifier,
        lockout=lockout,
        auth=AuthService(store, lockout, tokens, policy=policy, clock=clock),
        orgs=OrganizationService(store, policy=policy, clock=clock),
        transfers=transfers,
        members=MembershipStore(store, transfers, clock=clock),
        invites=InvitationManager(
            store,
            notifier,
            ttl_days=settings.invite_ttl_days,
            policy=policy,
            clock=clock,
        ),
        redis=redis_client,
    )
