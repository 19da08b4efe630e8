from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from tenancy.models.role import Role


class InviteStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


def new_invite_token() -> str:
    # 32 random bytes, hex encoded
    return secrets.token_hex(32)


@dataclass(frozen=True, slots=True)
class Invite:
    id: UUID
    org_id: UUID
    email: str
    role: Role
    token: str
    expires_at: datetime
    status: InviteStatus
    invited_by: UUID
    created_at: datetime
    updated_at: datetime
    accepted_by: UUID | None = None
    message: str | None = None

    @staticmethod
    def new(
        *,
        org_id: UUID,
        email: str,
        role: Role,
        invited_by: UUID,
        expires_at: datetime,
        now: datetime,
        message: str | None = None,
    ) -> Invite:
        return Invite(
            id=uuid4(),
            org_id=org_id,
            email=email,
            role=role,
            token=new_invite_token(),
            expires_at=expires_at,
            status=InviteStatus.PENDING,
            invited_by=invited_by,
            created_at=now,
            updated_at=now,
            message=message,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def effective_status(self, now: datetime) -> InviteStatus:
        """Stored status, with a lapsed PENDING invite reported as EXPIRED."""
        if self.status is InviteStatus.PENDING and self.is_expired(now):
            return InviteStatus.EXPIRED
        return self.status
