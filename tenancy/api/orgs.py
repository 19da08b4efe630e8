"""Organization endpoints.

Org context is resolved from the ``{org_id}`` path parameter and checked
against the caller's membership on every request; roles are never read
from the token.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from tenancy.api.dependencies import (
    ContainerDep,
    CurrentUser,
    OrgAdmin,
    OrgMember,
    OrgOwner,
    scoped_org_id,
)
from tenancy.models.organization import Membership, Organization
from tenancy.services.organization_service import OrgSummary

router = APIRouter(prefix="/organizations", tags=["organizations"])


# --- Pydantic schemas ---


class OrgCreateIn(BaseModel):
    name: str
    slug: str | None = None


class OrgUpdateIn(BaseModel):
    name: str | None = None
    slug: str | None = None


class TransferIn(BaseModel):
    new_owner_id: UUID


class LeaveIn(BaseModel):
    reassign_to: UUID | None = None


class OrgOut(BaseModel):
    id: UUID
    name: str
    slug: str
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, org: Organization) -> OrgOut:
        return cls(
            id=org.id,
            name=org.name,
            slug=org.slug,
            created_by=org.created_by,
            created_at=org.created_at,
            updated_at=org.updated_at,
        )


class OrgSummaryOut(OrgOut):
    role: str
    membership_id: UUID
    member_count: int

    @classmethod
    def of_summary(cls, s: OrgSummary) -> OrgSummaryOut:
        return cls(
            **OrgOut.of(s.org).model_dump(),
            role=s.role.value,
            membership_id=s.membership_id,
            member_count=s.member_count,
        )


class OrgListOut(BaseModel):
    organizations: list[OrgSummaryOut]


class OrgStats(BaseModel):
    members: int
    tasks: int
    time_entries: int


class OrgDetailOut(OrgOut):
    role: str
    membership_id: UUID
    assignable_roles: list[str]
    stats: OrgStats


class MembershipRef(BaseModel):
    membership_id: UUID
    user_id: UUID
    role: str

    @classmethod
    def of(cls, m: Membership) -> MembershipRef:
        return cls(membership_id=m.id, user_id=m.user_id, role=m.role.value)


class TransferOut(BaseModel):
    org_id: UUID
    previous_owner: MembershipRef
    new_owner: MembershipRef


class LeaveOut(BaseModel):
    left: bool = True
    org_id: UUID
    reassigned_tasks: int = Field(0, ge=0)
    reassigned_to: UUID | None = None


# --- Endpoints ---


@router.get("", response_model=OrgListOut)
async def list_orgs(principal: CurrentUser, container: ContainerDep) -> OrgListOut:
    summaries = await container.orgs.list_for_user(principal.user_id)
    return OrgListOut(organizations=[OrgSummaryOut.of_summary(s) for s in summaries])


@router.post("", response_model=OrgSummaryOut, status_code=status.HTTP_201_CREATED)
async def create_org(
    body: OrgCreateIn, principal: CurrentUser, container: ContainerDep
) -> OrgSummaryOut:
    """Create an organization; the caller becomes its OWNER."""
    summary = await container.orgs.create(principal.user_id, body.name, body.slug)
    return OrgSummaryOut.of_summary(summary)


@router.get("/{org_id}", response_model=OrgDetailOut)
async def get_org(principal: OrgMember, container: ContainerDep) -> OrgDetailOut:
    detail = await container.orgs.get(scoped_org_id(principal), principal.user_id)
    return OrgDetailOut(
        **OrgOut.of(detail.org).model_dump(),
        role=detail.membership.role.value,
        membership_id=detail.membership.id,
        assignable_roles=[r.value for r in detail.assignable_roles],
        stats=OrgStats(
            members=detail.member_count,
            tasks=detail.work.tasks,
            time_entries=detail.work.time_entries,
        ),
    )


@router.patch("/{org_id}", response_model=OrgOut)
async def update_org(
    body: OrgUpdateIn, principal: OrgAdmin, container: ContainerDep
) -> OrgOut:
    org = await container.orgs.update(
        scoped_org_id(principal), principal.user_id, name=body.name, slug=body.slug
    )
    return OrgOut.of(org)


@router.delete("/{org_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_org(
    principal: OrgOwner, container: ContainerDep, force: bool = False
) -> Response:
    await container.orgs.delete(
        scoped_org_id(principal), principal.user_id, force=force
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# OWNER-only.  Non-members stop at the guard with NOT_MEMBER; a member who is
# not the OWNER gets 403 OWNER_ONLY_TRANSFER from the coordinator, checked
# under the org lock.
@router.post("/{org_id}/transfer-ownership", response_model=TransferOut)
async def transfer_ownership(
    body: TransferIn, principal: OrgMember, container: ContainerDep
) -> TransferOut:
    """Make another member the OWNER; the caller becomes ADMIN."""
    result = await container.transfers.transfer(
        scoped_org_id(principal), principal.user_id, body.new_owner_id
    )
    return TransferOut(
        org_id=result.org_id,
        previous_owner=MembershipRef.of(result.previous_owner),
        new_owner=MembershipRef.of(result.new_owner),
    )


@router.post("/{org_id}/leave", response_model=LeaveOut)
async def leave_org(
    principal: OrgMember,
    container: ContainerDep,
    body: LeaveIn | None = None,
) -> LeaveOut:
    org_id = scoped_org_id(principal)
    result = await container.members.leave_organization(
        principal.user_id, org_id, reassign_to=body.reassign_to if body else None
    )
    return LeaveOut(
        org_id=org_id,
        reassigned_tasks=result.reassigned_tasks,
        reassigned_to=result.reassigned_to,
    )
