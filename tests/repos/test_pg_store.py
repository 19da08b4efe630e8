"""SQL store against SQLite (aiosqlite), same repos and services as production.

SQLite has no row locks, so these tests cover the SQL each repo emits and
the conditional-write semantics, not cross-connection concurrency.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

pytest.importorskip("aiosqlite")

from tenancy.core.errors import InviteLifecycleError  # noqa: E402
from tenancy.db.engine import Base, build_engine, build_session_factory  # noqa: E402
from tenancy.models.invite import Invite, InviteStatus  # noqa: E402
from tenancy.models.organization import Membership, Organization  # noqa: E402
from tenancy.models.role import Role  # noqa: E402
from tenancy.models.user import User  # noqa: E402
from tenancy.models.work_record import Task, TimeEntry  # noqa: E402
from tenancy.repos.base import StoreConflictError  # noqa: E402
from tenancy.repos.pg_store import PgStore  # noqa: E402
from tenancy.services.invitation_manager import InvitationManager  # noqa: E402
from tenancy.services.lockout_guard import LockoutGuard  # noqa: E402
from tenancy.services.notifier import Notifier  # noqa: E402
from tenancy.services.ownership_transfer import OwnershipTransferCoordinator  # noqa: E402
from tenancy.services.task_queue import InMemoryTaskQueue  # noqa: E402
from tests.support import T0, FakeClock  # noqa: E402


def _run(tmp_path: Path, scenario):
    async def _go():
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenancy.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        store = PgStore(engine, build_session_factory(engine))
        try:
            return await scenario(store)
        finally:
            await store.close()

    return asyncio.run(_go())


async def _seed(store: PgStore, *roles: Role) -> tuple[Organization, list[User], list[Membership]]:
    """An org whose first member is the OWNER, then one member per extra role."""
    users = [
        User.new(email=f"u{i}@x.com", name=f"User {i}", password_hash="h", now=T0)
        for i in range(len(roles) + 1)
    ]
    org = Organization.new(name="Acme", slug="acme", created_by=users[0].id, now=T0)
    memberships = [
        Membership.new(org_id=org.id, user_id=u.id, role=r, now=T0)
        for u, r in zip(users, (Role.OWNER, *roles))
    ]
    async with store.transaction() as uow:
        for user in users:
            await uow.users.add(user)
        await uow.orgs.add(org)
        for m in memberships:
            await uow.memberships.add(m)
    return org, users, memberships


def test_unique_email_and_slug(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        org, users, _ = await _seed(store)
        with pytest.raises(StoreConflictError):
            async with store.transaction() as uow:
                await uow.users.add(
                    User.new(email="u0@x.com", name="Dup", password_hash="h", now=T0)
                )
        with pytest.raises(StoreConflictError):
            async with store.transaction() as uow:
                await uow.orgs.add(
                    Organization.new(name="Other", slug="acme", created_by=users[0].id, now=T0)
                )
        async with store.transaction() as uow:
            assert (await uow.users.get_by_email("U0@X.com")).id == users[0].id
            assert (await uow.orgs.get_by_slug("ACME")).id == org.id

    _run(tmp_path, scenario)


def test_conditional_role_update(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        _, _, (owner, staff) = await _seed(store, Role.STAFF)
        now = T0 + timedelta(minutes=1)
        async with store.transaction() as uow:
            stale = await uow.memberships.update_role(
                staff.id, Role.ADMIN, expected_role=Role.CLIENT, updated_at=now
            )
            promoted = await uow.memberships.update_role(
                staff.id, Role.ADMIN, expected_role=Role.STAFF, updated_at=now
            )
            deleted = await uow.memberships.delete(owner.id, expected_role=Role.ADMIN)
        assert stale is None
        assert promoted.role is Role.ADMIN
        assert promoted.updated_at == now
        assert deleted is False

    _run(tmp_path, scenario)


def test_member_search_orders_by_rank(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        org, users, _ = await _seed(store, Role.CLIENT, Role.ADMIN, Role.STAFF)
        async with store.transaction() as uow:
            everyone, total = await uow.memberships.search(org.id)
            found, found_total = await uow.memberships.search(org.id, search="user 2")
            clients, _ = await uow.memberships.search(org.id, role=Role.CLIENT)
            owners = await uow.memberships.count_with_role(org.id, Role.OWNER)
        assert total == 4
        assert [r.membership.role for r in everyone] == [
            Role.OWNER,
            Role.ADMIN,
            Role.STAFF,
            Role.CLIENT,
        ]
        assert found_total == 1
        assert found[0].user.id == users[2].id
        assert [r.user.id for r in clients] == [users[1].id]
        assert owners == 1

    _run(tmp_path, scenario)


def test_one_pending_invite_per_email(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        org, users, _ = await _seed(store)

        def invite() -> Invite:
            return Invite.new(
                org_id=org.id,
                email="new@x.com",
                role=Role.STAFF,
                invited_by=users[0].id,
                expires_at=T0 + timedelta(days=7),
                now=T0,
            )

        first = invite()
        async with store.transaction() as uow:
            await uow.invites.add(first)
        with pytest.raises(StoreConflictError):
            async with store.transaction() as uow:
                await uow.invites.add(invite())

        later = T0 + timedelta(days=8)
        async with store.transaction() as uow:
            assert await uow.invites.expire_lapsed(org.id, "new@x.com", later) == 1
            await uow.invites.add(invite())
            expired, n_expired = await uow.invites.list_by_org(
                org.id, now=later, status=InviteStatus.EXPIRED
            )
        assert n_expired == 2  # the flipped row plus the new one, lapsed at `later`
        assert first.id in {i.id for i in expired}

    _run(tmp_path, scenario)


def test_lockout_counter(tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario(store: PgStore):
        guard = LockoutGuard(store, clock=clock)
        results = [await guard.record_failed_attempt("a@b.com") for _ in range(5)]
        assert results == [False, False, False, False, True]

        status = await guard.check_lockout("A@b.com")
        assert status.is_locked
        assert status.locked_until == T0 + timedelta(minutes=15)

        clock.advance(minutes=15)
        assert not (await guard.check_lockout("a@b.com")).is_locked

        await guard.record_failed_attempt("a@b.com")
        assert (await guard.check_lockout("a@b.com")).attempts == 1

        await guard.clear_attempts("a@b.com")
        assert (await guard.check_lockout("a@b.com")).attempts == 0

    _run(tmp_path, scenario)


def test_ownership_transfer(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        org, users, (owner, staff) = await _seed(store, Role.STAFF)
        coordinator = OwnershipTransferCoordinator(store, clock=FakeClock())

        result = await coordinator.transfer(org.id, users[0].id, users[1].id)

        assert result.previous_owner.role is Role.ADMIN
        assert result.new_owner.role is Role.OWNER
        async with store.transaction() as uow:
            assert (await uow.orgs.get_by_id(org.id)).created_by == users[1].id
            assert await uow.memberships.count_with_role(org.id, Role.OWNER) == 1
            assert (await uow.memberships.get(owner.id)).role is Role.ADMIN

    _run(tmp_path, scenario)


def test_accept_and_expiry(tmp_path: Path) -> None:
    clock = FakeClock()

    async def scenario(store: PgStore):
        org, users, _ = await _seed(store)
        manager = InvitationManager(
            store,
            Notifier(InMemoryTaskQueue(), app_url="http://app"),
            clock=clock,
        )
        joiner = User.new(email="new@x.com", name="New", password_hash="h", now=T0)
        late = User.new(email="late@x.com", name="Late", password_hash="h", now=T0)
        async with store.transaction() as uow:
            await uow.users.add(joiner)
            await uow.users.add(late)

        on_time = await manager.create(org.id, users[0].id, email="new@x.com", role=Role.STAFF)
        too_late = await manager.create(org.id, users[0].id, email="late@x.com", role=Role.CLIENT)

        joined = await manager.accept(on_time.invite.token, joiner.id)
        again = await manager.accept(on_time.invite.token, joiner.id)
        assert joined.membership.role is Role.STAFF
        assert again.already_member
        assert again.membership.id == joined.membership.id

        clock.advance(days=7, milliseconds=1)
        with pytest.raises(InviteLifecycleError) as exc:
            await manager.accept(too_late.invite.token, late.id)
        assert exc.value.code == "INVITE_EXPIRED"

        async with store.transaction() as uow:
            stored = await uow.invites.get(too_late.invite.id)
            assert await uow.memberships.get_for_user(org.id, late.id) is None
        assert stored.status is InviteStatus.EXPIRED

    _run(tmp_path, scenario)


def test_work_counts_and_org_delete(tmp_path: Path) -> None:
    async def scenario(store: PgStore):
        org, users, _ = await _seed(store, Role.STAFF)
        async with store.transaction() as uow:
            await uow.work.add_task(Task.new(org_id=org.id, created_by=users[1].id, title="t"))
            await uow.work.add_time_entry(
                TimeEntry.new(org_id=org.id, user_id=users[1].id, duration_seconds=60)
            )
            moved = await uow.work.reassign_tasks(org.id, users[1].id, users[0].id)
            counts = await uow.work.counts_for_member(org.id, users[1].id)
        assert moved == 1
        assert (counts.tasks, counts.time_entries) == (0, 1)

        async with store.transaction() as uow:
            assert await uow.orgs.delete(org.id)
        async with store.transaction() as uow:
            assert await uow.orgs.get_by_id(org.id) is None
            assert await uow.memberships.list_by_user(users[0].id) == []
            assert (await uow.work.counts_for_org(org.id)).time_entries == 0

    _run(tmp_path, scenario)
