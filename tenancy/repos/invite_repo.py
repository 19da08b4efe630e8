from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from tenancy.models.invite import Invite, InviteStatus
from tenancy.repos.base import InMemoryState, StoreConflictError


class InviteRepo(Protocol):
    async def add(self, invite: Invite) -> None: ...
    async def get(self, invite_id: UUID) -> Invite | None: ...
    async def get_by_token(self, token: str) -> Invite | None: ...
    async def find_pending(self, org_id: UUID, email: str) -> Invite | None: ...
    async def has_pending_for_email(self, email: str, *, now: datetime) -> bool: ...
    async def transition(
        self,
        invite_id: UUID,
        *,
        from_status: InviteStatus,
        to_status: InviteStatus,
        updated_at: datetime,
        accepted_by: UUID | None = None,
    ) -> Invite | None: ...
    async def expire_lapsed(self, org_id: UUID, email: str, now: datetime) -> int: ...
    async def list_by_org(
        self,
        org_id: UUID,
        *,
        now: datetime,
        status: InviteStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Invite], int]: ...


def matches_status(invite: Invite, status: InviteStatus | None, now: datetime) -> bool:
    return status is None or invite.effective_status(now) is status


class InMemoryInviteRepo:
    def __init__(self, state: InMemoryState) -> None:
        self._rows = state.invites

    async def add(self, invite: Invite) -> None:
        if await self.get_by_token(invite.token) is not None:
            raise StoreConflictError("invite token already exists")
        if await self.find_pending(invite.org_id, invite.email) is not None:
            raise StoreConflictError("pending invite already exists")
        self._rows[invite.id] = invite

    async def get(self, invite_id: UUID) -> Invite | None:
        return self._rows.get(invite_id)

    async def get_by_token(self, token: str) -> Invite | None:
        return next((i for i in self._rows.values() if i.token == token), None)

    async def find_pending(self, org_id: UUID, email: str) -> Invite | None:
        return next(
            (
                i
                for i in self._rows.values()
                if i.org_id == org_id
                and i.email == email
                and i.status is InviteStatus.PENDING
            ),
            None,
        )

    async def has_pending_for_email(self, email: str, *, now: datetime) -> bool:
        return any(
            i.email == email and i.effective_status(now) is InviteStatus.PENDING
            for i in self._rows.values()
        )

    async def transition(
        self,
        invite_id: UUID,
        *,
        from_status: InviteStatus,
        to_status: InviteStatus,
        updated_at: datetime,
        accepted_by: UUID | None = None,
    ) -> Invite | None:
        existing = self._rows.get(invite_id)
        if existing is None or existing.status is not from_status:
            return None
        updated = replace(existing, status=to_status, updated_at=updated_at)
        if accepted_by is not None:
            updated = replace(updated, accepted_by=accepted_by)
        self._rows[invite_id] = updated
        return updated

    async def expire_lapsed(self, org_id: UUID, email: str, now: datetime) -> int:
        lapsed = [
            i
            for i in self._rows.values()
            if i.org_id == org_id
            and i.email == email
            and i.status is InviteStatus.PENDING
            and i.is_expired(now)
        ]
        for invite in lapsed:
            self._rows[invite.id] = replace(
                invite, status=InviteStatus.EXPIRED, updated_at=now
            )
        return len(lapsed)

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        now: datetime,
        status: InviteStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Invite], int]:
        rows = [
            i
            for i in self._rows.values()
            if i.org_id == org_id and matches_status(i, status, now)
        ]
        rows.sort(key=lambda i: i.created_at, reverse=True)
        return rows[offset : offset + limit], len(rows)
