"""SQL-backed Store.

One AsyncSession per transaction; ``session.begin()`` commits when the
block exits and rolls back when it raises.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenancy.repos.pg_invite_repo import PgInviteRepo
from tenancy.repos.pg_lockout_repo import PgLockoutRepo
from tenancy.repos.pg_org_membership_repo import PgOrgMembershipRepo
from tenancy.repos.pg_org_repo import PgOrgRepo
from tenancy.repos.pg_user_repo import PgUserRepo
from tenancy.repos.pg_work_record_repo import PgWorkRecordRepo


class PgUnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = PgUserRepo(session)
        self.orgs = PgOrgRepo(session)
        self.memberships = PgOrgMembershipRepo(session)
        self.invites = PgInviteRepo(session)
        self.lockouts = PgLockoutRepo(session)
        self.work = PgWorkRecordRepo(session)


class PgStore:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PgUnitOfWork]:
        async with self._session_factory() as session:
            async with session.begin():
                yield PgUnitOfWork(session)

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self._engine.dispose()
