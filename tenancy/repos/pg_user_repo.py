"""PostgreSQL implementation of UserRepo."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.clock import from_epoch_ms, to_epoch_ms
from tenancy.db.tables import UserRow
from tenancy.models.user import User, normalize_email
from tenancy.repos.base import StoreConflictError


class PgUserRepo:
    """Satisfies the UserRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        row = await self._session.get(UserRow, user_id)
        return row_to_user(row) if row is not None else None

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(UserRow).where(UserRow.email == normalize_email(email))
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return row_to_user(row) if row is not None else None

    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        rows = (
            await self._session.execute(select(UserRow).where(UserRow.id.in_(ids)))
        ).scalars()
        return {row.id: row_to_user(row) for row in rows}

    async def add(self, user: User) -> None:
        self._session.add(
            UserRow(
                id=user.id,
                email=user.email,
                name=user.name,
                password_hash=user.password_hash,
                is_active=user.is_active,
                created_at=to_epoch_ms(user.created_at),
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise StoreConflictError("user email already exists") from e

    async def update_password_hash(self, user_id: UUID, password_hash: str) -> None:
        await self._session.execute(
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(password_hash=password_hash)
        )


def row_to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        created_at=from_epoch_ms(row.created_at),
        is_active=row.is_active,
    )
