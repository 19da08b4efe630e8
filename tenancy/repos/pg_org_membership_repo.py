"""PostgreSQL implementation of OrgMembershipRepo."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.clock import from_epoch_ms, to_epoch_ms
from tenancy.db.tables import MembershipRow, UserRow
from tenancy.models.organization import Membership
from tenancy.models.role import Role
from tenancy.repos.base import StoreConflictError
from tenancy.repos.org_membership_repo import MemberRecord
from tenancy.repos.pg_user_repo import row_to_user

# Role rank as a SQL expression, for ORDER BY
_ROLE_RANK = case(
    {role.value: role.rank for role in Role},
    value=MembershipRow.role,
    else_=0,
)


class PgOrgMembershipRepo:
    """Satisfies the OrgMembershipRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, membership_id: UUID) -> Membership | None:
        stmt = (
            select(MembershipRow)
            .where(MembershipRow.id == membership_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_membership(row) if row is not None else None

    async def get_for_user(self, org_id: UUID, user_id: UUID) -> Membership | None:
        stmt = (
            select(MembershipRow)
            .where(MembershipRow.org_id == org_id, MembershipRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_membership(row) if row is not None else None

    async def add(self, membership: Membership) -> None:
        self._session.add(
            MembershipRow(
                id=membership.id,
                org_id=membership.org_id,
                user_id=membership.user_id,
                role=membership.role.value,
                created_at=to_epoch_ms(membership.created_at),
                updated_at=to_epoch_ms(membership.updated_at),
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise StoreConflictError("membership already exists") from e

    async def update_role(
        self,
        membership_id: UUID,
        new_role: Role,
        *,
        expected_role: Role,
        updated_at: datetime,
    ) -> Membership | None:
        """Conditional update.  None when the row is gone or its role moved."""
        result = await self._session.execute(
            update(MembershipRow)
            .where(MembershipRow.id == membership_id)
            .where(MembershipRow.role == expected_role.value)
            .values(role=new_role.value, updated_at=to_epoch_ms(updated_at))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None  # concurrent writer won
        return await self.get(membership_id)

    async def delete(self, membership_id: UUID, *, expected_role: Role) -> bool:
        result = await self._session.execute(
            delete(MembershipRow)
            .where(MembershipRow.id == membership_id)
            .where(MembershipRow.role == expected_role.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_user(self, user_id: UUID) -> list[Membership]:
        stmt = select(MembershipRow).where(MembershipRow.user_id == user_id)
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_membership(row) for row in rows]

    async def count_by_org(self, org_id: UUID) -> int:
        stmt = select(func.count()).where(MembershipRow.org_id == org_id)
        return (await self._session.execute(stmt)).scalar_one()

    async def count_by_orgs(self, org_ids: Iterable[UUID]) -> dict[UUID, int]:
        ids = set(org_ids)
        if not ids:
            return {}
        stmt = (
            select(MembershipRow.org_id, func.count())
            .where(MembershipRow.org_id.in_(ids))
            .group_by(MembershipRow.org_id)
        )
        counts = {oid: n for oid, n in (await self._session.execute(stmt)).all()}
        return {oid: counts.get(oid, 0) for oid in ids}

    async def count_with_role(self, org_id: UUID, role: Role) -> int:
        stmt = select(func.count()).where(
            MembershipRow.org_id == org_id, MembershipRow.role == role.value
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def search(
        self,
        org_id: UUID,
        *,
        role: Role | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[MemberRecord], int]:
        conditions = [MembershipRow.org_id == org_id]
        if role is not None:
            conditions.append(MembershipRow.role == role.value)
        if search and search.strip():
            needle = search.strip().lower()
            conditions.append(
                or_(
                    func.lower(UserRow.name).contains(needle, autoescape=True),
                    func.lower(UserRow.email).contains(needle, autoescape=True),
                )
            )

        base = (
            select(MembershipRow, UserRow)
            .join(UserRow, UserRow.id == MembershipRow.user_id)
            .where(*conditions)
        )
        total = (
            await self._session.execute(
                select(func.count()).select_from(base.subquery())
            )
        ).scalar_one()

        stmt = (
            base.order_by(
                _ROLE_RANK.desc(),
                func.lower(UserRow.name),
                MembershipRow.created_at,
            )
            .offset(offset)
            .limit(limit)
        )
        records = [
            MemberRecord(membership=_row_to_membership(m), user=row_to_user(u))
            for m, u in (await self._session.execute(stmt)).all()
        ]
        return records, total


def _row_to_membership(row: MembershipRow) -> Membership:
    return Membership(
        id=row.id,
        org_id=row.org_id,
        user_id=row.user_id,
        role=Role(row.role),
        created_at=from_epoch_ms(row.created_at),
        updated_at=from_epoch_ms(row.updated_at),
    )
