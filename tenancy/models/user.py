from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True, slots=True)
class User:
    id: UUID
    email: str
    name: str
    password_hash: str
    created_at: datetime
    is_active: bool = True

    @staticmethod
    def new(*, email: str, name: str, password_hash: str, now: datetime) -> User:
        return User(
            id=uuid4(),
            email=normalize_email(email),
            name=name.strip(),
            password_hash=password_hash,
            created_at=now,
        )
