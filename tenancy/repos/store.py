"""Transactional store interface.

Services never touch a repository outside a transaction:

    async with store.transaction() as uow:
        membership = await uow.memberships.get(membership_id)
        ...

Leaving the block normally commits every write made through ``uow``; an
exception rolls all of them back.  Two implementations satisfy this
Protocol: InMemoryStore (dev/test) and PgStore (PostgreSQL).
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from tenancy.repos.invite_repo import InviteRepo
from tenancy.repos.lockout_repo import LockoutRepo
from tenancy.repos.org_membership_repo import OrgMembershipRepo
from tenancy.repos.org_repo import OrgRepo
from tenancy.repos.user_repo import UserRepo
from tenancy.repos.work_record_repo import WorkRecordRepo


class UnitOfWork(Protocol):
    users: UserRepo
    orgs: OrgRepo
    memberships: OrgMembershipRepo
    invites: InviteRepo
    lockouts: LockoutRepo
    work: WorkRecordRepo


class Store(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[UnitOfWork]: ...
    async def ping(self) -> None: ...
    async def close(self) -> None: ...
