from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from tenancy.models.role import Role


@dataclass(frozen=True, slots=True)
class Organization:
    id: UUID
    name: str
    slug: str
    created_by: UUID  # current owner's user id; moved by ownership transfer
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def new(*, name: str, slug: str, created_by: UUID, now: datetime) -> Organization:
        return Organization(
            id=uuid4(),
            name=name,
            slug=slug,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True, slots=True)
class Membership:
    id: UUID
    org_id: UUID
    user_id: UUID
    role: Role
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def new(*, org_id: UUID, user_id: UUID, role: Role, now: datetime) -> Membership:
        return Membership(
            id=uuid4(),
            org_id=org_id,
            user_id=user_id,
            role=role,
            created_at=now,
            updated_at=now,
        )
