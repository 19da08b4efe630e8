from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from tenancy.models.organization import Organization
from tenancy.repos.base import InMemoryState, StoreConflictError


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: UUID) -> Organization | None: ...
    async def lock(self, org_id: UUID) -> Organization | None: ...
    async def get_by_slug(self, slug: str) -> Organization | None: ...
    async def get_many(self, org_ids: Iterable[UUID]) -> dict[UUID, Organization]: ...
    async def add(self, org: Organization) -> None: ...
    async def update(
        self, org_id: UUID, *, name: str, slug: str, updated_at: datetime
    ) -> Organization | None: ...
    async def set_owner(
        self, org_id: UUID, user_id: UUID, *, updated_at: datetime
    ) -> bool: ...
    async def delete(self, org_id: UUID) -> bool: ...


class InMemoryOrgRepo:
    """Organization table over InMemoryState.

    ``delete`` cascades to every row the organization owns.  ``lock`` is a
    plain read: the in-memory store already serializes transactions.
    """

    def __init__(self, state: InMemoryState) -> None:
        self._state = state

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return self._state.orgs.get(org_id)

    async def lock(self, org_id: UUID) -> Organization | None:
        return self._state.orgs.get(org_id)

    async def get_by_slug(self, slug: str) -> Organization | None:
        slug = slug.lower()
        return next(
            (o for o in self._state.orgs.values() if o.slug.lower() == slug), None
        )

    async def get_many(self, org_ids: Iterable[UUID]) -> dict[UUID, Organization]:
        orgs = self._state.orgs
        return {oid: orgs[oid] for oid in set(org_ids) if oid in orgs}

    async def add(self, org: Organization) -> None:
        if await self.get_by_slug(org.slug) is not None:
            raise StoreConflictError(f"slug {org.slug!r} already taken")
        self._state.orgs[org.id] = org

    async def update(
        self, org_id: UUID, *, name: str, slug: str, updated_at: datetime
    ) -> Organization | None:
        existing = self._state.orgs.get(org_id)
        if existing is None:
            return None
        clash = await self.get_by_slug(slug)
        if clash is not None and clash.id != org_id:
            raise StoreConflictError(f"slug {slug!r} already taken")
        updated = replace(existing, name=name, slug=slug, updated_at=updated_at)
        self._state.orgs[org_id] = updated
        return updated

    async def set_owner(
        self, org_id: UUID, user_id: UUID, *, updated_at: datetime
    ) -> bool:
        existing = self._state.orgs.get(org_id)
        if existing is None:
            return False
        self._state.orgs[org_id] = replace(
            existing, created_by=user_id, updated_at=updated_at
        )
        return True

    async def delete(self, org_id: UUID) -> bool:
        if self._state.orgs.pop(org_id, None) is None:
            return False
        for table in (
            self._state.memberships,
            self._state.invites,
            self._state.tasks,
            self._state.time_entries,
        ):
            for key in [k for k, row in table.items() if row.org_id == org_id]:
                del table[key]
        return True
