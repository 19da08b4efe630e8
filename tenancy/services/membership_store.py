"""Membership rules on top of the store.

Every mutation runs in one transaction that locks the organization row,
re-reads the requester's membership, consults the role hierarchy, and then
performs conditional writes.  Rules enforced here:

  - nobody modifies or removes their own membership through this path
  - a role can only be granted by someone who outranks it (OWNER for OWNER)
  - a member can only be changed by someone who outranks them
  - the OWNER membership is never deleted; ownership is transferred first
  - a member with work records is only removed with ``force`` (tasks move
    to the requester) or leaves with ``reassign_to`` (tasks move there)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from tenancy.core.clock import Clock, utcnow
from tenancy.core.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from tenancy.core.metrics import MEMBERSHIP_CHANGES, OWNERSHIP_TRANSFERS
from tenancy.models.organization import Membership, Organization
from tenancy.models.role import Role
from tenancy.models.user import User
from tenancy.models.work_record import WorkCounts
from tenancy.repos.store import Store, UnitOfWork
from tenancy.services.ownership_transfer import OwnershipTransferCoordinator
from tenancy.services.role_hierarchy import can_assign_role, can_modify_member

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class MemberEntry:
    membership: Membership
    user: User
    can_modify: bool


@dataclass(frozen=True, slots=True)
class MemberPage:
    members: list[MemberEntry]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True, slots=True)
class MemberDetail:
    entry: MemberEntry
    work: WorkCounts


@dataclass(frozen=True, slots=True)
class RemovalResult:
    membership: Membership
    reassigned_tasks: int = 0
    reassigned_to: UUID | None = None


def clamp_paging(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


async def lock_org(uow: UnitOfWork, org_id: UUID) -> Organization:
    org = await uow.orgs.lock(org_id)
    if org is None:
        raise NotFound("Organization not found", code="ORG_NOT_FOUND")
    return org


async def require_membership(
    uow: UnitOfWork, org_id: UUID, user_id: UUID
) -> Membership:
    membership = await uow.memberships.get_for_user(org_id, user_id)
    if membership is None:
        raise PermissionDenied("Not a member of this organization", code="NOT_MEMBER")
    return membership


class MembershipStore:
    def __init__(
        self,
        store: Store,
        transfers: OwnershipTransferCoordinator,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._transfers = transfers
        self._clock = clock

    # --- reads -------------------------------------------------------------

    async def list_members(
        self,
        org_id: UUID,
        requester_user_id: UUID,
        *,
        role: Role | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> MemberPage:
        page, limit = clamp_paging(page, limit)
        async with self._store.transaction() as uow:
            requester = await require_membership(uow, org_id, requester_user_id)
            records, total = await uow.memberships.search(
                org_id,
                role=role,
                search=search,
                offset=(page - 1) * limit,
                limit=limit,
            )

        entries = [
            MemberEntry(
                membership=r.membership,
                user=r.user,
                can_modify=can_modify_member(
                    requester.role,
                    r.membership.role,
                    requester.user_id,
                    r.membership.user_id,
                ),
            )
            for r in records
        ]
        return MemberPage(members=entries, page=page, limit=limit, total=total)

    async def get_member(
        self, org_id: UUID, membership_id: UUID, requester_user_id: UUID
    ) -> MemberDetail:
        async with self._store.transaction() as uow:
            requester = await require_membership(uow, org_id, requester_user_id)
            target = await self._target(uow, org_id, membership_id)
            user = await uow.users.get_by_id(target.user_id)
            if user is None:
                raise NotFound("Member not found", code="MEMBER_NOT_FOUND")
            work = await uow.work.counts_for_member(org_id, target.user_id)

        entry = MemberEntry(
            membership=target,
            user=user,
            can_modify=can_modify_member(
                requester.role, target.role, requester.user_id, target.user_id
            ),
        )
        return MemberDetail(entry=entry, work=work)

    # --- mutations ---------------------------------------------------------

    async def update_role(
        self,
        org_id: UUID,
        membership_id: UUID,
        new_role: Role,
        requester_user_id: UUID,
    ) -> Membership:
        """Change a member's role.  Promoting to OWNER is an ownership transfer."""
        now = self._clock()
        async with self._store.transaction() as uow:
            org = await lock_org(uow, org_id)
            requester = await require_membership(uow, org_id, requester_user_id)
            target = await self._target(uow, org_id, membership_id)

            if target.user_id == requester.user_id:
                raise PermissionDenied(
                    "Cannot modify your own role", code="CANNOT_MODIFY_SELF"
                )
            if not can_assign_role(requester.role, new_role):
                logger.warning(
                    "Role assignment denied: user=%s role=%s cannot grant %s org=%s",
                    requester.user_id,
                    requester.role.value,
                    new_role.value,
                    org_id,
                )
                raise PermissionDenied(
                    f"{requester.role.value} cannot assign the {new_role.value} role",
                    code="INSUFFICIENT_PERMISSIONS",
                    details={"requested_role": new_role.value},
                )
            if not can_modify_member(
                requester.role, target.role, requester.user_id, target.user_id
            ):
                raise PermissionDenied(
                    "Cannot modify a member with an equal or higher role",
                    code="CANNOT_MODIFY_HIGHER_ROLE",
                )

            if new_role is Role.OWNER:
                result = await self._transfers.apply(
                    uow, org, requester, target, now=now
                )
                updated = result.new_owner
            elif new_role is target.role:
                return target
            else:
                updated = await uow.memberships.update_role(
                    target.id, new_role, expected_role=target.role, updated_at=now
                )
                if updated is None:
                    raise Conflict(
                        "Membership changed concurrently", code="MEMBERSHIP_CHANGED"
                    )

        if new_role is Role.OWNER:
            OWNERSHIP_TRANSFERS.labels(result="success").inc()
        MEMBERSHIP_CHANGES.labels(kind="role_update").inc()
        logger.info(
            "Role updated org=%s member=%s %s -> %s by=%s",
            org_id,
            target.user_id,
            target.role.value,
            updated.role.value,
            requester_user_id,
        )
        return updated

    async def remove_member(
        self,
        org_id: UUID,
        membership_id: UUID,
        requester_user_id: UUID,
        *,
        force: bool = False,
    ) -> RemovalResult:
        async with self._store.transaction() as uow:
            await lock_org(uow, org_id)
            requester = await require_membership(uow, org_id, requester_user_id)
            target = await self._target(uow, org_id, membership_id)

            if target.user_id == requester.user_id:
                raise PermissionDenied(
                    "Use leave to remove yourself", code="CANNOT_REMOVE_SELF"
                )
            if target.role is Role.OWNER:
                raise Conflict(
                    "Transfer ownership before removing the owner",
                    code="CANNOT_REMOVE_OWNER",
                )
            if not can_modify_member(
                requester.role, target.role, requester.user_id, target.user_id
            ):
                raise PermissionDenied(
                    "Cannot remove a member with an equal or higher role",
                    code="CANNOT_MODIFY_HIGHER_ROLE",
                )

            work = await uow.work.counts_for_member(org_id, target.user_id)
            if work.total and not force:
                raise Conflict(
                    "Member has associated data; pass force=true to reassign it",
                    code="MEMBER_HAS_DATA",
                    details={"tasks": work.tasks, "time_entries": work.time_entries},
                )

            reassigned = 0
            if work.tasks:
                reassigned = await uow.work.reassign_tasks(
                    org_id, target.user_id, requester.user_id
                )
            if not await uow.memberships.delete(target.id, expected_role=target.role):
                raise Conflict(
                    "Membership changed concurrently", code="MEMBERSHIP_CHANGED"
                )

        MEMBERSHIP_CHANGES.labels(kind="removed").inc()
        logger.info(
            "Member removed org=%s member=%s by=%s reassigned_tasks=%d",
            org_id,
            target.user_id,
            requester_user_id,
            reassigned,
        )
        return RemovalResult(
            membership=target,
            reassigned_tasks=reassigned,
            reassigned_to=requester.user_id if reassigned else None,
        )

    async def leave_organization(
        self, user_id: UUID, org_id: UUID, *, reassign_to: UUID | None = None
    ) -> RemovalResult:
        async with self._store.transaction() as uow:
            await lock_org(uow, org_id)
            membership = await require_membership(uow, org_id, user_id)

            if membership.role is Role.OWNER:
                raise Conflict(
                    "Transfer ownership before leaving the organization",
                    code="SOLE_OWNER",
                )

            if reassign_to is not None:
                target = (
                    None
                    if reassign_to == user_id
                    else await uow.memberships.get_for_user(org_id, reassign_to)
                )
                if target is None:
                    raise ValidationFailed(
                        "reassign_to must be another member of this organization",
                        code="INVALID_REASSIGN_TARGET",
                    )

            work = await uow.work.counts_for_member(org_id, user_id)
            reassigned = 0
            if work.tasks:
                if reassign_to is None:
                    raise Conflict(
                        "You own tasks in this organization; choose a member to "
                        "reassign them to",
                        code="REASSIGNMENT_REQUIRED",
                        details={"tasks": work.tasks},
                    )
                reassigned = await uow.work.reassign_tasks(org_id, user_id, reassign_to)

            if not await uow.memberships.delete(
                membership.id, expected_role=membership.role
            ):
                raise Conflict(
                    "Membership changed concurrently", code="MEMBERSHIP_CHANGED"
                )

        MEMBERSHIP_CHANGES.labels(kind="left").inc()
        logger.info(
            "Member left org=%s user=%s reassigned_tasks=%d",
            org_id,
            user_id,
            reassigned,
        )
        return RemovalResult(
            membership=membership,
            reassigned_tasks=reassigned,
            reassigned_to=reassign_to if reassigned else None,
        )

    @staticmethod
    async def _target(
        uow: UnitOfWork, org_id: UUID, membership_id: UUID
    ) -> Membership:
        target = await uow.memberships.get(membership_id)
        if target is None or target.org_id != org_id:
            raise NotFound("Member not found", code="MEMBER_NOT_FOUND")
        return target
