"""Shared pieces of the repository layer."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from uuid import UUID

from tenancy.models.invite import Invite
from tenancy.models.lockout import AccountLockout
from tenancy.models.organization import Membership, Organization
from tenancy.models.user import User
from tenancy.models.work_record import Task, TimeEntry


class StoreConflictError(Exception):
    """A write violated a uniqueness constraint (slug, email, token, ...)."""


@dataclass
class InMemoryState:
    """Every table of the in-memory store, keyed by primary key."""

    users: dict[UUID, User] = field(default_factory=dict)
    orgs: dict[UUID, Organization] = field(default_factory=dict)
    memberships: dict[UUID, Membership] = field(default_factory=dict)
    invites: dict[UUID, Invite] = field(default_factory=dict)
    lockouts: dict[str, AccountLockout] = field(default_factory=dict)
    tasks: dict[UUID, Task] = field(default_factory=dict)
    time_entries: dict[UUID, TimeEntry] = field(default_factory=dict)

    def snapshot(self) -> InMemoryState:
        # Rows are frozen dataclasses, so copying each table dict is enough.
        return InMemoryState(
            **{f.name: dict(getattr(self, f.name)) for f in fields(self)}
        )
