"""Minimal views of records owned by the task and time-tracking subsystems.

Membership operations only count them and move task ownership around.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Task:
    id: UUID
    org_id: UUID
    created_by: UUID
    title: str

    @staticmethod
    def new(*, org_id: UUID, created_by: UUID, title: str) -> Task:
        return Task(id=uuid4(), org_id=org_id, created_by=created_by, title=title)


@dataclass(frozen=True, slots=True)
class TimeEntry:
    id: UUID
    org_id: UUID
    user_id: UUID
    duration_seconds: int

    @staticmethod
    def new(*, org_id: UUID, user_id: UUID, duration_seconds: int) -> TimeEntry:
        return TimeEntry(
            id=uuid4(),
            org_id=org_id,
            user_id=user_id,
            duration_seconds=duration_seconds,
        )


@dataclass(frozen=True, slots=True)
class WorkCounts:
    tasks: int = 0
    time_entries: int = 0

    @property
    def total(self) -> int:
        return self.tasks + self.time_entries
