"""Member management within one organization (ADMIN or higher)."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from tenancy.api.dependencies import ContainerDep, OrgAdmin, scoped_org_id
from tenancy.models.role import Role
from tenancy.services.membership_store import MemberEntry

router = APIRouter(prefix="/organizations/{org_id}/members", tags=["members"])


class RoleUpdateIn(BaseModel):
    role: Role


class MemberOut(BaseModel):
    id: UUID
    user_id: UUID
    email: str
    name: str
    role: str
    joined_at: datetime
    can_modify: bool

    @classmethod
    def of(cls, e: MemberEntry) -> MemberOut:
        return cls(
            id=e.membership.id,
            user_id=e.user.id,
            email=e.user.email,
            name=e.user.name,
            role=e.membership.role.value,
            joined_at=e.membership.created_at,
            can_modify=e.can_modify,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MemberListOut(BaseModel):
    members: list[MemberOut]
    pagination: Pagination


class WorkOut(BaseModel):
    tasks: int
    time_entries: int


class MemberDetailOut(MemberOut):
    work: WorkOut


class RoleUpdateOut(BaseModel):
    id: UUID
    user_id: UUID
    role: str
    updated_at: datetime


class RemovalOut(BaseModel):
    removed: bool = True
    id: UUID
    user_id: UUID
    reassigned_tasks: int
    reassigned_to: UUID | None = None


@router.get("", response_model=MemberListOut)
async def list_members(
    principal: OrgAdmin,
    container: ContainerDep,
    page: int = 1,
    limit: int = 50,
    role: Role | None = None,
    search: str | None = None,
) -> MemberListOut:
    result = await container.members.list_members(
        scoped_org_id(principal),
        principal.user_id,
        role=role,
        search=search,
        page=page,
        limit=limit,
    )
    return MemberListOut(
        members=[MemberOut.of(e) for e in result.members],
        pagination=Pagination(
            page=result.page, limit=result.limit, total=result.total, pages=result.pages
        ),
    )


@router.get("/{membership_id}", response_model=MemberDetailOut)
async def get_member(
    membership_id: UUID, principal: OrgAdmin, container: ContainerDep
) -> MemberDetailOut:
    detail = await container.members.get_member(
        scoped_org_id(principal), membership_id, principal.user_id
    )
    return MemberDetailOut(
        **MemberOut.of(detail.entry).model_dump(),
        work=WorkOut(tasks=detail.work.tasks, time_entries=detail.work.time_entries),
    )


@router.patch("/{membership_id}", response_model=RoleUpdateOut)
async def update_member_role(
    membership_id: UUID,
    body: RoleUpdateIn,
    principal: OrgAdmin,
    container: ContainerDep,
) -> RoleUpdateOut:
    """Change a member's role.  ``OWNER`` transfers ownership to them."""
    updated = await container.members.update_role(
        scoped_org_id(principal), membership_id, body.role, principal.user_id
    )
    return RoleUpdateOut(
        id=updated.id,
        user_id=updated.user_id,
        role=updated.role.value,
        updated_at=updated.updated_at,
    )


@router.delete("/{membership_id}", response_model=RemovalOut)
async def remove_member(
    membership_id: UUID,
    principal: OrgAdmin,
    container: ContainerDep,
    force: bool = False,
) -> RemovalOut:
    result = await container.members.remove_member(
        scoped_org_id(principal), membership_id, principal.user_id, force=force
    )
    return RemovalOut(
        id=result.membership.id,
        user_id=result.membership.user_id,
        reassigned_tasks=result.reassigned_tasks,
        reassigned_to=result.reassigned_to,
    )
