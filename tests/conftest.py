from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tenancy.container import Container, build_container
from tenancy.core.config import Settings, TenancyPolicy
from tenancy.main import create_app
from tenancy.repos.memory_store import InMemoryStore
from tenancy.services.rate_limiter import InMemoryRateLimiter
from tenancy.services.task_queue import InMemoryTaskQueue
from tests.support import TOKENS, FakeClock, make_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh store per test; nothing bleeds between tests."""
    return InMemoryStore()


@pytest.fixture
def task_queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def policy() -> TenancyPolicy:
    """Override in a module to test a locked-down deployment."""
    return TenancyPolicy()


@pytest.fixture
def settings(policy: TenancyPolicy) -> Settings:
    return make_settings(tenancy=policy)


@pytest.fixture
def container(
    settings: Settings,
    store: InMemoryStore,
    task_queue: InMemoryTaskQueue,
    clock: FakeClock,
) -> Container:
    return build_container(
        settings,
        store=store,
        task_queue=task_queue,
        rate_limiter=InMemoryRateLimiter(),
        tokens=TOKENS,
        clock=clock,
    )


@pytest.fixture
def client(container: Container) -> TestClient:
    return TestClient(create_app(container=container))
