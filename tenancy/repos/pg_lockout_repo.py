"""PostgreSQL implementation of LockoutRepo.

The failed-attempt counter is bumped with a single
INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement, so two concurrent
failures for one identifier can never both read the same old count.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, and_, case, literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.clock import from_epoch_ms, to_epoch_ms
from tenancy.db.tables import AccountLockoutRow
from tenancy.models.lockout import AccountLockout

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class PgLockoutRepo:
    """Satisfies the LockoutRepo Protocol using PostgreSQL (or SQLite in tests)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, identifier: str) -> AccountLockout | None:
        stmt = (
            select(AccountLockoutRow)
            .where(AccountLockoutRow.identifier == identifier)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_lockout(row) if row is not None else None

    async def record_failure(
        self,
        identifier: str,
        *,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> AccountLockout:
        dialect = self._session.get_bind().dialect.name
        try:
            insert = _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"no atomic upsert for dialect {dialect!r}") from None

        now_ms = to_epoch_ms(now)
        lock_ms = literal(to_epoch_ms(lock_until), BigInteger)
        table = AccountLockoutRow.__table__

        lapsed = and_(table.c.locked_until.is_not(None), table.c.locked_until <= now_ms)
        attempts = case((lapsed, 1), else_=table.c.failed_attempts + 1)

        stmt = insert(AccountLockoutRow).values(
            identifier=identifier,
            failed_attempts=1,
            locked_until=to_epoch_ms(lock_until) if max_attempts <= 1 else None,
            created_at=now_ms,
            updated_at=now_ms,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.identifier],
            set_={
                "failed_attempts": attempts,
                "locked_until": case((attempts >= max_attempts, lock_ms), else_=None),
                "updated_at": now_ms,
            },
        ).returning(
            table.c.identifier,
            table.c.failed_attempts,
            table.c.locked_until,
            table.c.created_at,
            table.c.updated_at,
        )
        row = (await self._session.execute(stmt)).one()
        return AccountLockout(
            identifier=row.identifier,
            failed_attempts=row.failed_attempts,
            locked_until=(
                from_epoch_ms(row.locked_until) if row.locked_until is not None else None
            ),
            created_at=from_epoch_ms(row.created_at),
            updated_at=from_epoch_ms(row.updated_at),
        )

    async def reset(self, identifier: str, *, now: datetime) -> None:
        await self._session.execute(
            update(AccountLockoutRow)
            .where(AccountLockoutRow.identifier == identifier)
            .values(failed_attempts=0, locked_until=None, updated_at=to_epoch_ms(now))
            .execution_options(synchronize_session=False)
        )


def _row_to_lockout(row: AccountLockoutRow) -> AccountLockout:
    return AccountLockout(
        identifier=row.identifier,
        failed_attempts=row.failed_attempts,
        locked_until=(
            from_epoch_ms(row.locked_until) if row.locked_until is not None else None
        ),
        created_at=from_epoch_ms(row.created_at),
        updated_at=from_epoch_ms(row.updated_at),
    )
