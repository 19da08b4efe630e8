from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from tenancy.models.organization import Membership
from tenancy.models.role import Role
from tenancy.models.user import User
from tenancy.repos.base import InMemoryState, StoreConflictError


@dataclass(frozen=True, slots=True)
class MemberRecord:
    """A membership joined with the user it belongs to."""

    membership: Membership
    user: User


class OrgMembershipRepo(Protocol):
    async def get(self, membership_id: UUID) -> Membership | None: ...
    async def get_for_user(self, org_id: UUID, user_id: UUID) -> Membership | None: ...
    async def add(self, membership: Membership) -> None: ...
    async def update_role(
        self,
        membership_id: UUID,
        new_role: Role,
        *,
        expected_role: Role,
        updated_at: datetime,
    ) -> Membership | None: ...
    async def delete(self, membership_id: UUID, *, expected_role: Role) -> bool: ...
    async def list_by_user(self, user_id: UUID) -> list[Membership]: ...
    async def count_by_org(self, org_id: UUID) -> int: ...
    async def count_by_orgs(self, org_ids: Iterable[UUID]) -> dict[UUID, int]: ...
    async def count_with_role(self, org_id: UUID, role: Role) -> int: ...
    async def search(
        self,
        org_id: UUID,
        *,
        role: Role | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[MemberRecord], int]: ...


class InMemoryOrgMembershipRepo:
    """Membership table over InMemoryState.

    ``update_role`` and ``delete`` are conditional on the role the caller
    read earlier in the same transaction; they report "no row" when it no
    longer matches, like ``UPDATE ... WHERE role = :expected``.
    """

    def __init__(self, state: InMemoryState) -> None:
        self._state = state
        self._rows = state.memberships

    async def get(self, membership_id: UUID) -> Membership | None:
        return self._rows.get(membership_id)

    async def get_for_user(self, org_id: UUID, user_id: UUID) -> Membership | None:
        return next(
            (
                m
                for m in self._rows.values()
                if m.org_id == org_id and m.user_id == user_id
            ),
            None,
        )

    async def add(self, membership: Membership) -> None:
        if await self.get_for_user(membership.org_id, membership.user_id) is not None:
            raise StoreConflictError("membership already exists")
        self._rows[membership.id] = membership

    async def update_role(
        self,
        membership_id: UUID,
        new_role: Role,
        *,
        expected_role: Role,
        updated_at: datetime,
    ) -> Membership | None:
        existing = self._rows.get(membership_id)
        if existing is None or existing.role is not expected_role:
            return None
        updated = replace(existing, role=new_role, updated_at=updated_at)
        self._rows[membership_id] = updated
        return updated

    async def delete(self, membership_id: UUID, *, expected_role: Role) -> bool:
        existing = self._rows.get(membership_id)
        if existing is None or existing.role is not expected_role:
            return False
        del self._rows[membership_id]
        return True

    async def list_by_user(self, user_id: UUID) -> list[Membership]:
        return [m for m in self._rows.values() if m.user_id == user_id]

    async def count_by_org(self, org_id: UUID) -> int:
        return sum(1 for m in self._rows.values() if m.org_id == org_id)

    async def count_by_orgs(self, org_ids: Iterable[UUID]) -> dict[UUID, int]:
        wanted = set(org_ids)
        counts = Counter(m.org_id for m in self._rows.values() if m.org_id in wanted)
        return {oid: counts.get(oid, 0) for oid in wanted}

    async def count_with_role(self, org_id: UUID, role: Role) -> int:
        return sum(
            1 for m in self._rows.values() if m.org_id == org_id and m.role is role
        )

    async def search(
        self,
        org_id: UUID,
        *,
        role: Role | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[MemberRecord], int]:
        needle = search.strip().lower() if search else None
        records: list[MemberRecord] = []
        for m in self._rows.values():
            if m.org_id != org_id or (role is not None and m.role is not role):
                continue
            user = self._state.users.get(m.user_id)
            if user is None:
                continue
            if needle and needle not in user.name.lower() and needle not in user.email:
                continue
            records.append(MemberRecord(membership=m, user=user))

        records.sort(
            key=lambda r: (
                -r.membership.role.rank,
                r.user.name.lower(),
                r.membership.created_at,
            )
        )
        return records[offset : offset + limit], len(records)
