"""PostgreSQL implementation of OrgRepo."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.clock import from_epoch_ms, to_epoch_ms
from tenancy.db.tables import (
    InviteRow,
    MembershipRow,
    OrganizationRow,
    TaskRow,
    TimeEntryRow,
)
from tenancy.models.organization import Organization
from tenancy.repos.base import StoreConflictError


class PgOrgRepo:
    """Satisfies the OrgRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        row = await self._session.get(OrganizationRow, org_id)
        return _row_to_org(row) if row is not None else None

    async def lock(self, org_id: UUID) -> Organization | None:
        """SELECT ... FOR UPDATE on the organization row.

        Every membership mutation takes this lock first, so writers within
        one organization are serialized until their transaction ends.
        """
        stmt = (
            select(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_org(row) if row is not None else None

    async def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(OrganizationRow).where(
            func.lower(OrganizationRow.slug) == slug.lower()
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_org(row) if row is not None else None

    async def get_many(self, org_ids: Iterable[UUID]) -> dict[UUID, Organization]:
        ids = set(org_ids)
        if not ids:
            return {}
        stmt = select(OrganizationRow).where(OrganizationRow.id.in_(ids))
        rows = (await self._session.execute(stmt)).scalars()
        return {row.id: _row_to_org(row) for row in rows}

    async def add(self, org: Organization) -> None:
        self._session.add(
            OrganizationRow(
                id=org.id,
                name=org.name,
                slug=org.slug,
                created_by=org.created_by,
                created_at=to_epoch_ms(org.created_at),
                updated_at=to_epoch_ms(org.updated_at),
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise StoreConflictError(f"slug {org.slug!r} already taken") from e

    async def update(
        self, org_id: UUID, *, name: str, slug: str, updated_at: datetime
    ) -> Organization | None:
        stmt = (
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .values(name=name, slug=slug, updated_at=to_epoch_ms(updated_at))
        )
        try:
            result = await self._session.execute(stmt)
        except IntegrityError as e:
            raise StoreConflictError(f"slug {slug!r} already taken") from e
        if result.rowcount == 0:
            return None
        return await self._refetch(org_id)

    async def set_owner(
        self, org_id: UUID, user_id: UUID, *, updated_at: datetime
    ) -> bool:
        result = await self._session.execute(
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .values(created_by=user_id, updated_at=to_epoch_ms(updated_at))
        )
        return result.rowcount == 1

    async def delete(self, org_id: UUID) -> bool:
        # Children first; the FK cascade is not relied on so SQLite behaves
        # the same as PostgreSQL.
        for table in (TimeEntryRow, TaskRow, InviteRow, MembershipRow):
            await self._session.execute(delete(table).where(table.org_id == org_id))
        result = await self._session.execute(
            delete(OrganizationRow).where(OrganizationRow.id == org_id)
        )
        return result.rowcount == 1

    async def _refetch(self, org_id: UUID) -> Organization | None:
        stmt = (
            select(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_org(row) if row is not None else None


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        created_by=row.created_by,
        created_at=from_epoch_ms(row.created_at),
        updated_at=from_epoch_ms(row.updated_at),
    )
