"""In-memory Store for dev and tests.

Transactions are serialized by one asyncio.Lock.  Each transaction works on
a copy of the committed tables, which replaces the committed state only
when the block exits without an exception.  Readers therefore never see a
half-applied multi-row update, and a failing operation leaves nothing
behind.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from tenancy.repos.base import InMemoryState
from tenancy.repos.invite_repo import InMemoryInviteRepo
from tenancy.repos.lockout_repo import InMemoryLockoutRepo
from tenancy.repos.org_membership_repo import InMemoryOrgMembershipRepo
from tenancy.repos.org_repo import InMemoryOrgRepo
from tenancy.repos.user_repo import InMemoryUserRepo
from tenancy.repos.work_record_repo import InMemoryWorkRecordRepo


class InMemoryUnitOfWork:
    def __init__(self, state: InMemoryState) -> None:
        self.users = InMemoryUserRepo(state)
        self.orgs = InMemoryOrgRepo(state)
        self.memberships = InMemoryOrgMembershipRepo(state)
        self.invites = InMemoryInviteRepo(state)
        self.lockouts = InMemoryLockoutRepo(state)
        self.work = InMemoryWorkRecordRepo(state)


class InMemoryStore:
    def __init__(self, state: InMemoryState | None = None) -> None:
        self._state = state or InMemoryState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> InMemoryState:
        """Committed state (read-only use in tests)."""
        return self._state

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryUnitOfWork]:
        async with self._lock:
            working = self._state.snapshot()
            yield InMemoryUnitOfWork(working)
            self._state = working

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None
