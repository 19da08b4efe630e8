"""PostgreSQL implementation of WorkRecordRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.db.tables import TaskRow, TimeEntryRow
from tenancy.models.work_record import Task, TimeEntry, WorkCounts


class PgWorkRecordRepo:
    """Satisfies the WorkRecordRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_task(self, task: Task) -> None:
        self._session.add(
            TaskRow(
                id=task.id,
                org_id=task.org_id,
                created_by=task.created_by,
                title=task.title,
            )
        )
        await self._session.flush()

    async def add_time_entry(self, entry: TimeEntry) -> None:
        self._session.add(
            TimeEntryRow(
                id=entry.id,
                org_id=entry.org_id,
                user_id=entry.user_id,
                duration_seconds=entry.duration_seconds,
            )
        )
        await self._session.flush()

    async def counts_for_member(self, org_id: UUID, user_id: UUID) -> WorkCounts:
        tasks = await self._count(
            TaskRow.org_id == org_id, TaskRow.created_by == user_id
        )
        entries = await self._count(
            TimeEntryRow.org_id == org_id, TimeEntryRow.user_id == user_id
        )
        return WorkCounts(tasks=tasks, time_entries=entries)

    async def counts_for_org(self, org_id: UUID) -> WorkCounts:
        return WorkCounts(
            tasks=await self._count(TaskRow.org_id == org_id),
            time_entries=await self._count(TimeEntryRow.org_id == org_id),
        )

    async def reassign_tasks(
        self, org_id: UUID, from_user_id: UUID, to_user_id: UUID
    ) -> int:
        result = await self._session.execute(
            update(TaskRow)
            .where(TaskRow.org_id == org_id, TaskRow.created_by == from_user_id)
            .values(created_by=to_user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _count(self, *conditions) -> int:
        stmt = select(func.count()).where(*conditions)
        return (await self._session.execute(stmt)).scalar_one()
