"""Invitation endpoints.

Org-scoped management (list, create, revoke, resend) needs ADMIN or higher
in the organization.  The preview is public so that the invite page can be
rendered before the invitee has an account; accepting needs a session
whose email matches the invitation.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from tenancy.api.dependencies import (
    ContainerDep,
    CurrentUser,
    OrgAdmin,
    scoped_org_id,
)
from tenancy.api.members import Pagination
from tenancy.api.ratelimit import INVITE_PREVIEW_LIMIT, require_rate_limit
from tenancy.models.invite import Invite, InviteStatus
from tenancy.models.role import Role
from tenancy.models.user import User
from tenancy.services.invitation_manager import InviteView

router = APIRouter(tags=["invites"])


class InviteCreateIn(BaseModel):
    email: str
    role: Role = Role.STAFF
    message: str | None = None


class AcceptIn(BaseModel):
    token: str


class UserRef(BaseModel):
    id: UUID
    email: str
    name: str

    @classmethod
    def of(cls, user: User | None) -> UserRef | None:
        if user is None:
            return None
        return cls(id=user.id, email=user.email, name=user.name)


class InviteOut(BaseModel):
    id: UUID
    org_id: UUID
    email: str
    role: str
    status: str
    expires_at: datetime
    created_at: datetime
    message: str | None = None

    @classmethod
    def of(cls, invite: Invite, status: InviteStatus | None = None) -> InviteOut:
        return cls(
            id=invite.id,
            org_id=invite.org_id,
            email=invite.email,
            role=invite.role.value,
            status=(status or invite.status).value,
            expires_at=invite.expires_at,
            created_at=invite.created_at,
            message=invite.message,
        )


class InviteCreatedOut(BaseModel):
    invite: InviteOut
    invite_url: str
    email_queued: bool


class InviteListItem(InviteOut):
    is_expired: bool
    can_revoke: bool
    invited_by: UserRef | None
    accepted_by: UserRef | None

    @classmethod
    def of_view(cls, v: InviteView) -> InviteListItem:
        return cls(
            **InviteOut.of(v.invite, v.status).model_dump(),
            is_expired=v.is_expired,
            can_revoke=v.can_revoke,
            invited_by=UserRef.of(v.inviter),
            accepted_by=UserRef.of(v.acceptor),
        )


class InviteListOut(BaseModel):
    invites: list[InviteListItem]
    pagination: Pagination


class ResendOut(BaseModel):
    resent: bool = True
    invite: InviteOut


class OrgPreview(BaseModel):
    id: UUID
    name: str
    slug: str
    member_count: int


class InviteDetailsOut(BaseModel):
    email: str
    role: str
    status: str
    expires_at: datetime
    is_expired: bool
    message: str | None
    organization: OrgPreview
    invited_by_name: str | None


class AcceptedOrg(BaseModel):
    id: UUID
    name: str
    slug: str


class AcceptOut(BaseModel):
    organization: AcceptedOrg
    membership_id: UUID
    role: str
    already_member: bool


# --- Org-scoped management ---


@router.get("/organizations/{org_id}/invites", response_model=InviteListOut)
async def list_invites(
    principal: OrgAdmin,
    container: ContainerDep,
    status: InviteStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> InviteListOut:
    result = await container.invites.list_invites(
        scoped_org_id(principal),
        principal.user_id,
        status=status,
        page=page,
        limit=limit,
    )
    return InviteListOut(
        invites=[InviteListItem.of_view(v) for v in result.invites],
        pagination=Pagination(
            page=result.page, limit=result.limit, total=result.total, pages=result.pages
        ),
    )


@router.post(
    "/organizations/{org_id}/invites",
    response_model=InviteCreatedOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_invite(
    body: InviteCreateIn, principal: OrgAdmin, container: ContainerDep
) -> InviteCreatedOut:
    created = await container.invites.create(
        scoped_org_id(principal),
        principal.user_id,
        email=body.email,
        role=body.role,
        message=body.message,
    )
    return InviteCreatedOut(
        invite=InviteOut.of(created.invite),
        invite_url=container.notifier.invite_link(created.invite),
        email_queued=created.email_queued,
    )


@router.delete("/organizations/{org_id}/invites/{invite_id}", response_model=InviteOut)
async def revoke_invite(
    invite_id: UUID, principal: OrgAdmin, container: ContainerDep
) -> InviteOut:
    invite = await container.invites.revoke(
        scoped_org_id(principal), invite_id, principal.user_id
    )
    return InviteOut.of(invite)


@router.post(
    "/organizations/{org_id}/invites/{invite_id}/resend", response_model=ResendOut
)
async def resend_invite(
    invite_id: UUID, principal: OrgAdmin, container: ContainerDep
) -> ResendOut:
    invite = await container.invites.resend(
        scoped_org_id(principal), invite_id, principal.user_id
    )
    return ResendOut(invite=InviteOut.of(invite))


# --- Invitee side ---


@router.get(
    "/invites/{token}/details",
    response_model=InviteDetailsOut,
    dependencies=[Depends(require_rate_limit(INVITE_PREVIEW_LIMIT, scope="invite"))],
)
async def invite_details(token: str, container: ContainerDep) -> InviteDetailsOut:
    preview = await container.invites.details(token)
    invite = preview.invite
    return InviteDetailsOut(
        email=invite.email,
        role=invite.role.value,
        status=preview.status.value,
        expires_at=invite.expires_at,
        is_expired=preview.status is InviteStatus.EXPIRED,
        message=invite.message,
        organization=OrgPreview(
            id=preview.org.id,
            name=preview.org.name,
            slug=preview.org.slug,
            member_count=preview.member_count,
        ),
        invited_by_name=preview.inviter_name,
    )


@router.post("/invites/accept", response_model=AcceptOut)
async def accept_invite(
    body: AcceptIn, principal: CurrentUser, container: ContainerDep
) -> AcceptOut:
    result = await container.invites.accept(body.token, principal.user_id)
    return AcceptOut(
        organization=AcceptedOrg(
            id=result.org.id, name=result.org.name, slug=result.org.slug
        ),
        membership_id=result.membership.id,
        role=result.membership.role.value,
        already_member=result.already_member,
    )
