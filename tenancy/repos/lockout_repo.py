from __future__ import annotations

from datetime import datetime
from typing import Protocol

from tenancy.models.lockout import AccountLockout
from tenancy.repos.base import InMemoryState


class LockoutRepo(Protocol):
    async def get(self, identifier: str) -> AccountLockout | None: ...
    async def record_failure(
        self,
        identifier: str,
        *,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> AccountLockout: ...
    async def reset(self, identifier: str, *, now: datetime) -> None: ...


class InMemoryLockoutRepo:
    """Lockout counters over InMemoryState.

    ``record_failure`` has the same semantics as the SQL upsert: a counter
    whose lock has already lapsed restarts at 1, and reaching
    ``max_attempts`` sets ``locked_until``.
    """

    def __init__(self, state: InMemoryState) -> None:
        self._rows = state.lockouts

    async def get(self, identifier: str) -> AccountLockout | None:
        return self._rows.get(identifier)

    async def record_failure(
        self,
        identifier: str,
        *,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> AccountLockout:
        existing = self._rows.get(identifier)
        if existing is None:
            attempts = 1
            created_at = now
        else:
            lapsed = existing.locked_until is not None and existing.locked_until <= now
            attempts = 1 if lapsed else existing.failed_attempts + 1
            created_at = existing.created_at

        record = AccountLockout(
            identifier=identifier,
            failed_attempts=attempts,
            locked_until=lock_until if attempts >= max_attempts else None,
            created_at=created_at,
            updated_at=now,
        )
        self._rows[identifier] = record
        return record

    async def reset(self, identifier: str, *, now: datetime) -> None:
        existing = self._rows.get(identifier)
        if existing is None:
            return
        self._rows[identifier] = AccountLockout(
            identifier=identifier,
            failed_attempts=0,
            locked_until=None,
            created_at=existing.created_at,
            updated_at=now,
        )
