from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from tenancy.models.user import User, normalize_email
from tenancy.repos.base import InMemoryState, StoreConflictError


class UserRepo(Protocol):
    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def get_by_email(self, email: str) -> User | None: ...
    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, User]: ...
    async def add(self, user: User) -> None: ...
    async def update_password_hash(self, user_id: UUID, password_hash: str) -> None: ...


class InMemoryUserRepo:
    def __init__(self, state: InMemoryState) -> None:
        self._users = state.users

    async def get_by_id(self, user_id: UUID) -> User | None:
        return self._users.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        email = normalize_email(email)
        return next((u for u in self._users.values() if u.email == email), None)

    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        return {uid: self._users[uid] for uid in set(user_ids) if uid in self._users}

    async def add(self, user: User) -> None:
        if user.id in self._users or await self.get_by_email(user.email) is not None:
            raise StoreConflictError("user email already exists")
        self._users[user.id] = user

    async def update_password_hash(self, user_id: UUID, password_hash: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            self._users[user_id] = replace(user, password_hash=password_hash)
