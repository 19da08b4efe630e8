"""Ownership transfer coordinator.

Moving OWNER from one member to another is three writes that must commit
together:

  1. target membership  role -> OWNER   (WHERE role = <role read earlier>)
  2. caller membership  role -> ADMIN   (WHERE role = 'OWNER')
  3. organization.created_by -> target user id

All of them run inside one store transaction that first locks the
organization row, so concurrent transfers in one organization queue up
behind each other.  Each write is conditional; if one of them matches no
row the whole transaction is rolled back with OWNERSHIP_CHANGED.  Nobody
outside the transaction can observe zero or two owners.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from tenancy.core.clock import Clock, utcnow
from tenancy.core.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    ServiceError,
    ValidationFailed,
)
from tenancy.core.metrics import OWNERSHIP_TRANSFERS
from tenancy.models.organization import Membership, Organization
from tenancy.models.role import Role
from tenancy.repos.store import Store, UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferResult:
    org_id: UUID
    previous_owner: Membership
    new_owner: Membership


class OwnershipTransferCoordinator:
    def __init__(self, store: Store, *, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def transfer(
        self, org_id: UUID, caller_user_id: UUID, new_owner_user_id: UUID
    ) -> TransferResult:
        """Transfer ownership of ``org_id`` from the caller to another member."""
        try:
            async with self._store.transaction() as uow:
                org = await uow.orgs.lock(org_id)
                if org is None:
                    raise NotFound("Organization not found", code="ORG_NOT_FOUND")

                caller = await uow.memberships.get_for_user(org_id, caller_user_id)
                if caller is None:
                    raise PermissionDenied(
                        "Not a member of this organization", code="NOT_MEMBER"
                    )
                if new_owner_user_id == caller_user_id:
                    raise ValidationFailed(
                        "Cannot transfer ownership to yourself",
                        code="INVALID_TRANSFER",
                    )

                target = await uow.memberships.get_for_user(org_id, new_owner_user_id)
                if target is None:
                    raise NotFound(
                        "User is not a member of this organization",
                        code="MEMBER_NOT_FOUND",
                    )

                result = await self.apply(uow, org, caller, target, now=self._clock())
        except ServiceError as e:
            OWNERSHIP_TRANSFERS.labels(result=e.code).inc()
            raise

        OWNERSHIP_TRANSFERS.labels(result="success").inc()
        return result

    async def apply(
        self,
        uow: UnitOfWork,
        org: Organization,
        caller: Membership,
        target: Membership,
        *,
        now: datetime,
    ) -> TransferResult:
        """Run the three writes inside the caller's transaction.

        ``org`` must already be locked by that transaction and both
        memberships must have been read after taking the lock.
        """
        if caller.role is not Role.OWNER:
            logger.warning(
                "Transfer denied: user=%s role=%s org=%s",
                caller.user_id,
                caller.role.value,
                org.id,
            )
            raise PermissionDenied(
                "Only the organization owner can transfer ownership",
                code="OWNER_ONLY_TRANSFER",
            )
        if target.id == caller.id:
            raise ValidationFailed(
                "Cannot transfer ownership to yourself", code="INVALID_TRANSFER"
            )
        if target.role is Role.OWNER:
            raise ValidationFailed(
                "Target member is already the owner", code="INVALID_TRANSFER"
            )

        promoted = await uow.memberships.update_role(
            target.id, Role.OWNER, expected_role=target.role, updated_at=now
        )
        if promoted is None:
            raise Conflict("Target membership changed", code="OWNERSHIP_CHANGED")

        demoted = await uow.memberships.update_role(
            caller.id, Role.ADMIN, expected_role=Role.OWNER, updated_at=now
        )
        if demoted is None:
            raise Conflict("Organization owner changed", code="OWNERSHIP_CHANGED")

        if not await uow.orgs.set_owner(org.id, target.user_id, updated_at=now):
            raise Conflict("Organization no longer exists", code="OWNERSHIP_CHANGED")

        logger.info(
            "Ownership transferred org=%s from=%s to=%s",
            org.id,
            caller.user_id,
            target.user_id,
            extra={"org_id": str(org.id)},
        )
        return TransferResult(org_id=org.id, previous_owner=demoted, new_owner=promoted)
