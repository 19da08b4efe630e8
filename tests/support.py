"""Helpers shared by the test modules: clock, tokens and store seeding."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from tenancy.core.config import Settings
from tenancy.models.organization import Membership, Organization
from tenancy.models.role import Role
from tenancy.models.user import User
from tenancy.models.work_record import Task, TimeEntry
from tenancy.repos.memory_store import InMemoryStore
from tenancy.services.token_service import TokenService

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

# one signing key for the whole run; the test app verifies with it too
TOKENS = TokenService()


class FakeClock:
    """Settable clock; services call it like ``utcnow``."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = dict(
        app_env="test",
        log_level="info",
        port=8000,
        database_url=None,
        redis_url=None,
    )
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def mint_token(user: User) -> str:
    """Create a valid ES256 JWT for ``user``."""
    return TOKENS.create_access_token(sub=str(user.id), email=user.email)


def auth(user: User | None) -> dict[str, str]:
    if user is None:
        return {}
    return {"Authorization": f"Bearer {mint_token(user)}"}


# ---------------------------------------------------------------------------
# Store seeding
# ---------------------------------------------------------------------------


def _run(store: InMemoryStore, fn):
    async def _go():
        async with store.transaction() as uow:
            return await fn(uow)

    return asyncio.run(_go())


def create_test_user(
    store: InMemoryStore,
    email: str,
    name: str | None = None,
    *,
    password_hash: str = "not-a-real-hash",
) -> User:
    user = User.new(
        email=email,
        name=name or email.split("@")[0].title(),
        password_hash=password_hash,
        now=T0,
    )
    _run(store, lambda uow: uow.users.add(user))
    return user


def create_test_org(
    store: InMemoryStore, owner: User, slug: str = "test-org"
) -> Organization:
    """Persist an org with ``owner`` as its OWNER."""
    org = Organization.new(
        name=slug.replace("-", " ").title(), slug=slug, created_by=owner.id, now=T0
    )
    membership = Membership.new(org_id=org.id, user_id=owner.id, role=Role.OWNER, now=T0)

    async def _add(uow):
        await uow.orgs.add(org)
        await uow.memberships.add(membership)

    _run(store, _add)
    return org


def add_test_member(
    store: InMemoryStore, org: Organization, user: User, role: Role
) -> Membership:
    membership = Membership.new(org_id=org.id, user_id=user.id, role=role, now=T0)
    _run(store, lambda uow: uow.memberships.add(membership))
    return membership


def add_test_task(store: InMemoryStore, org: Organization, user: User) -> Task:
    task = Task.new(org_id=org.id, created_by=user.id, title="Write report")
    _run(store, lambda uow: uow.work.add_task(task))
    return task


def add_test_time_entry(
    store: InMemoryStore, org: Organization, user: User
) -> TimeEntry:
    entry = TimeEntry.new(org_id=org.id, user_id=user.id, duration_seconds=1800)
    _run(store, lambda uow: uow.work.add_time_entry(entry))
    return entry


def membership_of(store: InMemoryStore, org: Organization, user: User) -> Membership | None:
    return next(
        (
            m
            for m in store.state.memberships.values()
            if m.org_id == org.id and m.user_id == user.id
        ),
        None,
    )


def owners_of(store: InMemoryStore, org_id) -> list[Membership]:
    return [
        m
        for m in store.state.memberships.values()
        if m.org_id == org_id and m.role is Role.OWNER
    ]


def team(store: InMemoryStore, slug: str = "test-org") -> dict:
    """An org with one member per role, plus an outsider with no membership."""
    users = {
        "owner": create_test_user(store, f"owner@{slug}.com", "Olive Owner"),
        "admin": create_test_user(store, f"admin@{slug}.com", "Adam Admin"),
        "staff": create_test_user(store, f"staff@{slug}.com", "Sam Staff"),
        "client": create_test_user(store, f"client@{slug}.com", "Cleo Client"),
        "outsider": create_test_user(store, f"outsider@{slug}.com", "Otto Outsider"),
    }
    org = create_test_org(store, users["owner"], slug)
    memberships = {
        "owner": membership_of(store, org, users["owner"]),
        "admin": add_test_member(store, org, users["admin"], Role.ADMIN),
        "staff": add_test_member(store, org, users["staff"], Role.STAFF),
        "client": add_test_member(store, org, users["client"], Role.CLIENT),
    }
    return {"org": org, "users": users, "memberships": memberships}
