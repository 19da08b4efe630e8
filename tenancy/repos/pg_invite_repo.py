"""PostgreSQL implementation of InviteRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.clock import from_epoch_ms, to_epoch_ms
from tenancy.db.tables import InviteRow
from tenancy.models.invite import Invite, InviteStatus
from tenancy.models.role import Role
from tenancy.repos.base import StoreConflictError

_PENDING = InviteStatus.PENDING.value


class PgInviteRepo:
    """Satisfies the InviteRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, invite: Invite) -> None:
        self._session.add(
            InviteRow(
                id=invite.id,
                org_id=invite.org_id,
                email=invite.email,
                role=invite.role.value,
                token=invite.token,
                expires_at=to_epoch_ms(invite.expires_at),
                status=invite.status.value,
                invited_by=invite.invited_by,
                accepted_by=invite.accepted_by,
                message=invite.message,
                created_at=to_epoch_ms(invite.created_at),
                updated_at=to_epoch_ms(invite.updated_at),
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            # token collision or a concurrent pending invite for (org, email)
            raise StoreConflictError("invite already exists") from e

    async def get(self, invite_id: UUID) -> Invite | None:
        return await self._one(InviteRow.id == invite_id)

    async def get_by_token(self, token: str) -> Invite | None:
        return await self._one(InviteRow.token == token)

    async def find_pending(self, org_id: UUID, email: str) -> Invite | None:
        return await self._one(
            InviteRow.org_id == org_id,
            InviteRow.email == email,
            InviteRow.status == _PENDING,
        )

    async def has_pending_for_email(self, email: str, *, now: datetime) -> bool:
        stmt = (
            select(InviteRow.id)
            .where(
                InviteRow.email == email,
                InviteRow.status == _PENDING,
                InviteRow.expires_at >= to_epoch_ms(now),
            )
            .limit(1)
        )
        return (await self._session.execute(stmt)).first() is not None

    async def transition(
        self,
        invite_id: UUID,
        *,
        from_status: InviteStatus,
        to_status: InviteStatus,
        updated_at: datetime,
        accepted_by: UUID | None = None,
    ) -> Invite | None:
        """UPDATE ... WHERE status = :from_status.  None if another writer won."""
        values: dict[str, object] = {
            "status": to_status.value,
            "updated_at": to_epoch_ms(updated_at),
        }
        if accepted_by is not None:
            values["accepted_by"] = accepted_by
        result = await self._session.execute(
            update(InviteRow)
            .where(InviteRow.id == invite_id)
            .where(InviteRow.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get(invite_id)

    async def expire_lapsed(self, org_id: UUID, email: str, now: datetime) -> int:
        now_ms = to_epoch_ms(now)
        result = await self._session.execute(
            update(InviteRow)
            .where(
                InviteRow.org_id == org_id,
                InviteRow.email == email,
                InviteRow.status == _PENDING,
                InviteRow.expires_at < now_ms,
            )
            .values(status=InviteStatus.EXPIRED.value, updated_at=now_ms)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        now: datetime,
        status: InviteStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Invite], int]:
        conditions = [InviteRow.org_id == org_id]
        if status is not None:
            conditions.append(_effective_status_is(status, to_epoch_ms(now)))

        total = (
            await self._session.execute(
                select(func.count()).select_from(InviteRow).where(*conditions)
            )
        ).scalar_one()
        stmt = (
            select(InviteRow)
            .where(*conditions)
            .order_by(InviteRow.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_invite(row) for row in rows], total

    async def _one(self, *conditions) -> Invite | None:
        stmt = (
            select(InviteRow)
            .where(*conditions)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_invite(row) if row is not None else None


def _effective_status_is(status: InviteStatus, now_ms: int):
    lapsed = and_(InviteRow.status == _PENDING, InviteRow.expires_at < now_ms)
    if status is InviteStatus.PENDING:
        return and_(InviteRow.status == _PENDING, InviteRow.expires_at >= now_ms)
    if status is InviteStatus.EXPIRED:
        return or_(InviteRow.status == InviteStatus.EXPIRED.value, lapsed)
    return InviteRow.status == status.value


def _row_to_invite(row: InviteRow) -> Invite:
    return Invite(
        id=row.id,
        org_id=row.org_id,
        email=row.email,
        role=Role(row.role),
        token=row.token,
        expires_at=from_epoch_ms(row.expires_at),
        status=InviteStatus(row.status),
        invited_by=row.invited_by,
        created_at=from_epoch_ms(row.created_at),
        updated_at=from_epoch_ms(row.updated_at),
        accepted_by=row.accepted_by,
        message=row.message,
    )
