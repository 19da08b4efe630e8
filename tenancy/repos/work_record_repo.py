from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from tenancy.models.work_record import Task, TimeEntry, WorkCounts
from tenancy.repos.base import InMemoryState


class WorkRecordRepo(Protocol):
    async def add_task(self, task: Task) -> None: ...
    async def add_time_entry(self, entry: TimeEntry) -> None: ...
    async def counts_for_member(self, org_id: UUID, user_id: UUID) -> WorkCounts: ...
    async def counts_for_org(self, org_id: UUID) -> WorkCounts: ...
    async def reassign_tasks(
        self, org_id: UUID, from_user_id: UUID, to_user_id: UUID
    ) -> int: ...


class InMemoryWorkRecordRepo:
    def __init__(self, state: InMemoryState) -> None:
        self._tasks = state.tasks
        self._time_entries = state.time_entries

    async def add_task(self, task: Task) -> None:
        self._tasks[task.id] = task

    async def add_time_entry(self, entry: TimeEntry) -> None:
        self._time_entries[entry.id] = entry

    async def counts_for_member(self, org_id: UUID, user_id: UUID) -> WorkCounts:
        return WorkCounts(
            tasks=sum(
                1
                for t in self._tasks.values()
                if t.org_id == org_id and t.created_by == user_id
            ),
            time_entries=sum(
                1
                for e in self._time_entries.values()
                if e.org_id == org_id and e.user_id == user_id
            ),
        )

    async def counts_for_org(self, org_id: UUID) -> WorkCounts:
        return WorkCounts(
            tasks=sum(1 for t in self._tasks.values() if t.org_id == org_id),
            time_entries=sum(
                1 for e in self._time_entries.values() if e.org_id == org_id
            ),
        )

    async def reassign_tasks(
        self, org_id: UUID, from_user_id: UUID, to_user_id: UUID
    ) -> int:
        moved = [
            t
            for t in self._tasks.values()
            if t.org_id == org_id and t.created_by == from_user_id
        ]
        for task in moved:
            self._tasks[task.id] = replace(task, created_by=to_user_id)
        return len(moved)
