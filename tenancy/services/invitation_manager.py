"""Invitation lifecycle.

    PENDING --accept--> ACCEPTED
       |  \\--revoke--> REVOKED
       \\--(expires_at < now, observed lazily)--> EXPIRED

ACCEPTED, EXPIRED and REVOKED are terminal.  Every transition is a
conditional write ``WHERE status = 'PENDING'`` so two racing callers cannot
both move the same invite.  There is no expiry sweeper: a lapsed invite is
reported as EXPIRED on read and flipped in storage when someone tries to
accept it, or when a new invite for the same (org, email) is created.

Emails are queued after the transaction commits.  A queueing failure on
create is reported as ``email_queued=False``; on resend it is an error,
since sending the email is the whole point of a resend.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import UUID

from tenancy.core.clock import Clock, utcnow
from tenancy.core.config import TenancyPolicy
from tenancy.core.errors import (
    AuthenticationFailed,
    Conflict,
    InfrastructureError,
    InviteLifecycleError,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from tenancy.core.metrics import INVITE_TRANSITIONS, MEMBERSHIP_CHANGES
from tenancy.models.invite import Invite, InviteStatus, new_invite_token
from tenancy.models.organization import Membership, Organization
from tenancy.models.role import INVITABLE_ROLES, Role
from tenancy.models.user import User, normalize_email
from tenancy.repos.base import StoreConflictError
from tenancy.repos.store import Store, UnitOfWork
from tenancy.services.membership_store import (
    clamp_paging,
    lock_org,
    require_membership,
)
from tenancy.services.notifier import Notifier
from tenancy.services.role_hierarchy import can_assign_role

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MESSAGE_MAX_LENGTH = 500
_TOKEN_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class CreatedInvite:
    invite: Invite
    email_queued: bool


@dataclass(frozen=True, slots=True)
class AcceptResult:
    org: Organization
    membership: Membership
    already_member: bool


@dataclass(frozen=True, slots=True)
class InvitePreview:
    invite: Invite
    status: InviteStatus
    org: Organization
    member_count: int
    inviter_name: str | None


@dataclass(frozen=True, slots=True)
class InviteView:
    invite: Invite
    status: InviteStatus
    is_expired: bool
    can_revoke: bool
    inviter: User | None
    acceptor: User | None


@dataclass(frozen=True, slots=True)
class InvitePage:
    invites: list[InviteView]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


def _not_pending(invite: Invite) -> InviteLifecycleError:
    return InviteLifecycleError(
        f"Invitation is {invite.status.value.lower()}",
        code="INVITE_NOT_PENDING",
        details={"status": invite.status.value},
    )


def _expired(invite: Invite) -> InviteLifecycleError:
    return InviteLifecycleError(
        "Invitation has expired",
        code="INVITE_EXPIRED",
        details={"expired_at": invite.expires_at.isoformat()},
    )


async def _require_admin(uow: UnitOfWork, org_id: UUID, user_id: UUID) -> Membership:
    membership = await require_membership(uow, org_id, user_id)
    if membership.role.rank < Role.ADMIN.rank:
        raise PermissionDenied("Requires ADMIN role or higher")
    return membership


class InvitationManager:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        *,
        ttl_days: int = 7,
        policy: TenancyPolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._ttl = timedelta(days=ttl_days)
        self._policy = policy or TenancyPolicy()
        self._clock = clock

    async def create(
        self,
        org_id: UUID,
        requester_user_id: UUID,
        *,
        email: str,
        role: Role,
        message: str | None = None,
    ) -> CreatedInvite:
        email = normalize_email(email)
        if not EMAIL_PATTERN.match(email):
            raise ValidationFailed(
                "Invalid email address",
                details=[{"field": "email", "message": "invalid email"}],
            )
        if role not in INVITABLE_ROLES:
            raise ValidationFailed(
                "OWNER cannot be granted by invitation; transfer ownership instead",
                details=[{"field": "role", "message": "OWNER is not invitable"}],
            )
        if message is not None:
            message = message.strip() or None
        if message is not None and len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationFailed(
                f"Message must be at most {MESSAGE_MAX_LENGTH} characters",
                details=[{"field": "message", "message": "too long"}],
            )

        now = self._clock()
        async with self._store.transaction() as uow:
            org = await lock_org(uow, org_id)
            requester = await _require_admin(uow, org_id, requester_user_id)
            if not can_assign_role(requester.role, role):
                logger.warning(
                    "Invite denied: user=%s role=%s cannot grant %s org=%s",
                    requester_user_id,
                    requester.role.value,
                    role.value,
                    org_id,
                )
                raise PermissionDenied(
                    f"{requester.role.value} cannot invite as {role.value}",
                    details={"requested_role": role.value},
                )

            invitee = await uow.users.get_by_email(email)
            if invitee is not None and await uow.memberships.get_for_user(
                org_id, invitee.id
            ):
                raise Conflict(
                    "User is already a member of this organization",
                    code="ALREADY_MEMBER",
                )

            expired = await uow.invites.expire_lapsed(org_id, email, now)

            existing = await uow.invites.find_pending(org_id, email)
            if existing is not None:
                raise Conflict(
                    "An invitation is already pending for this email",
                    code="INVITE_EXISTS",
                    details={
                        "invite_id": str(existing.id),
                        "role": existing.role.value,
                        "expires_at": existing.expires_at.isoformat(),
                    },
                )

            await self._check_member_cap(uow, org_id)

            invite = Invite.new(
                org_id=org_id,
                email=email,
                role=role,
                invited_by=requester_user_id,
                expires_at=now + self._ttl,
                now=now,
                message=message,
            )
            for _ in range(_TOKEN_ATTEMPTS):
                if await uow.invites.get_by_token(invite.token) is None:
                    break
                invite = replace(invite, token=new_invite_token())
            else:
                raise InfrastructureError("Could not generate a unique invite token")

            try:
                await uow.invites.add(invite)
            except StoreConflictError:
                raise Conflict(
                    "An invitation is already pending for this email",
                    code="INVITE_EXISTS",
                ) from None
            inviter = await uow.users.get_by_id(requester_user_id)

        if expired:
            INVITE_TRANSITIONS.labels(status=InviteStatus.EXPIRED.value).inc(expired)
        INVITE_TRANSITIONS.labels(status=InviteStatus.PENDING.value).inc()
        logger.info(
            "Invite created org=%s invite=%s role=%s by=%s",
            org_id,
            invite.id,
            role.value,
            requester_user_id,
        )
        queued = await self._notifier.send_invite(
            invite,
            org,
            inviter_name=inviter.name if inviter else "A teammate",
            now=now,
        )
        return CreatedInvite(invite=invite, email_queued=queued)

    async def resend(
        self, org_id: UUID, invite_id: UUID, requester_user_id: UUID
    ) -> Invite:
        now = self._clock()
        async with self._store.transaction() as uow:
            org = await lock_org(uow, org_id)
            await _require_admin(uow, org_id, requester_user_id)
            invite = await self._invite_in_org(uow, org_id, invite_id)
            if invite.status is not InviteStatus.PENDING:
                raise _not_pending(invite)
            if invite.is_expired(now):
                raise _expired(invite)
            inviter = await uow.users.get_by_id(requester_user_id)

        sent = await self._notifier.send_invite(
            invite,
            org,
            inviter_name=inviter.name if inviter else "A teammate",
            now=now,
            resend=True,
        )
        if not sent:
            raise InfrastructureError(
                "Failed to send invitation email",
                code="NOTIFICATION_FAILED",
                status_code=503,
            )
        logger.info("Invite resent org=%s invite=%s", org_id, invite.id)
        return invite

    async def revoke(
        self, org_id: UUID, invite_id: UUID, requester_user_id: UUID
    ) -> Invite:
        now = self._clock()
        async with self._store.transaction() as uow:
            await lock_org(uow, org_id)
            await _require_admin(uow, org_id, requester_user_id)
            invite = await self._invite_in_org(uow, org_id, invite_id)
            if invite.status is not InviteStatus.PENDING:
                raise _not_pending(invite)
            revoked = await uow.invites.transition(
                invite.id,
                from_status=InviteStatus.PENDING,
                to_status=InviteStatus.REVOKED,
                updated_at=now,
            )
            if revoked is None:
                current = await uow.invites.get(invite.id)
                raise _not_pending(current or invite)

        INVITE_TRANSITIONS.labels(status=InviteStatus.REVOKED.value).inc()
        logger.info(
            "Invite revoked org=%s invite=%s by=%s", org_id, invite.id, requester_user_id
        )
        return revoked

    async def accept(self, token: str, user_id: UUID) -> AcceptResult:
        """Join the invite's organization as the authenticated ``user_id``.

        Accepting a token that this same user already accepted succeeds again
        with ``already_member=True``.  An existing member accepting a fresh
        invite keeps their current role.
        """
        now = self._clock()
        async with self._store.transaction() as uow:
            invite = await uow.invites.get_by_token(token)
            if invite is None:
                raise NotFound("Invitation not found", code="INVITE_NOT_FOUND")
            user = await uow.users.get_by_id(user_id)
            if user is None:
                raise AuthenticationFailed("Unknown user")

            result = await self._accept(uow, invite, user, now)

        if result is None:
            INVITE_TRANSITIONS.labels(status=InviteStatus.EXPIRED.value).inc()
            logger.info("Invite expired on accept invite=%s", invite.id)
            raise _expired(invite)

        if result.already_member:
            logger.info(
                "Invite accepted by existing member org=%s user=%s",
                result.org.id,
                user_id,
            )
            return result

        INVITE_TRANSITIONS.labels(status=InviteStatus.ACCEPTED.value).inc()
        MEMBERSHIP_CHANGES.labels(kind="joined").inc()
        logger.info(
            "Invite accepted org=%s invite=%s user=%s role=%s",
            result.org.id,
            invite.id,
            user_id,
            result.membership.role.value,
        )
        await self._notifier.send_welcome(
            to=user.email, name=user.name, org=result.org, role=result.membership.role.value
        )
        return result

    async def _accept(
        self, uow: UnitOfWork, invite: Invite, user: User, now: datetime
    ) -> AcceptResult | None:
        """Run the accept rules inside ``uow``.  None means "expired, committed"."""
        if invite.status is InviteStatus.ACCEPTED and invite.accepted_by == user.id:
            existing = await uow.memberships.get_for_user(invite.org_id, user.id)
            org = await uow.orgs.get_by_id(invite.org_id)
            if existing is not None and org is not None:
                return AcceptResult(org=org, membership=existing, already_member=True)
        if invite.status is not InviteStatus.PENDING:
            raise _not_pending(invite)

        if invite.is_expired(now):
            await uow.invites.transition(
                invite.id,
                from_status=InviteStatus.PENDING,
                to_status=InviteStatus.EXPIRED,
                updated_at=now,
            )
            return None

        if user.email != invite.email:
            logger.warning(
                "Invite email mismatch invite=%s user=%s", invite.id, user.id
            )
            raise InviteLifecycleError(
                "This invitation was sent to a different email address",
                code="EMAIL_MISMATCH",
                status_code=403,
            )

        org = await lock_org(uow, invite.org_id)
        existing = await uow.memberships.get_for_user(org.id, user.id)
        if existing is not None:
            await uow.invites.transition(
                invite.id,
                from_status=InviteStatus.PENDING,
                to_status=InviteStatus.ACCEPTED,
                updated_at=now,
                accepted_by=user.id,
            )
            return AcceptResult(org=org, membership=existing, already_member=True)

        await self._check_member_cap(uow, org.id)

        accepted = await uow.invites.transition(
            invite.id,
            from_status=InviteStatus.PENDING,
            to_status=InviteStatus.ACCEPTED,
            updated_at=now,
            accepted_by=user.id,
        )
        if accepted is None:
            # lost a race with another acceptor
            existing = await uow.memberships.get_for_user(org.id, user.id)
            if existing is not None:
                return AcceptResult(org=org, membership=existing, already_member=True)
            current = await uow.invites.get(invite.id)
            raise _not_pending(current or invite)

        membership = Membership.new(
            org_id=org.id, user_id=user.id, role=invite.role, now=now
        )
        try:
            await uow.memberships.add(membership)
        except StoreConflictError:
            raise Conflict(
                "Membership changed concurrently", code="MEMBERSHIP_CHANGED"
            ) from None
        return AcceptResult(org=org, membership=membership, already_member=False)

    async def details(self, token: str) -> InvitePreview:
        """Public preview of an invitation.  Never writes."""
        now = self._clock()
        async with self._store.transaction() as uow:
            invite = await uow.invites.get_by_token(token)
            if invite is None:
                raise NotFound("Invitation not found", code="INVITE_NOT_FOUND")
            org = await uow.orgs.get_by_id(invite.org_id)
            if org is None:
                raise NotFound("Invitation not found", code="INVITE_NOT_FOUND")
            member_count = await uow.memberships.count_by_org(org.id)
            inviter = await uow.users.get_by_id(invite.invited_by)

        return InvitePreview(
            invite=invite,
            status=invite.effective_status(now),
            org=org,
            member_count=member_count,
            inviter_name=inviter.name if inviter else None,
        )

    async def list_invites(
        self,
        org_id: UUID,
        requester_user_id: UUID,
        *,
        status: InviteStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> InvitePage:
        page, limit = clamp_paging(page, limit)
        now = self._clock()
        async with self._store.transaction() as uow:
            await lock_org(uow, org_id)
            await _require_admin(uow, org_id, requester_user_id)
            invites, total = await uow.invites.list_by_org(
                org_id,
                now=now,
                status=status,
                offset=(page - 1) * limit,
                limit=limit,
            )
            user_ids = {i.invited_by for i in invites} | {
                i.accepted_by for i in invites if i.accepted_by is not None
            }
            users = await uow.users.get_many(user_ids)

        views = [
            InviteView(
                invite=i,
                status=i.effective_status(now),
                is_expired=i.is_expired(now),
                can_revoke=i.status is InviteStatus.PENDING,
                inviter=users.get(i.invited_by),
                acceptor=users.get(i.accepted_by) if i.accepted_by else None,
            )
            for i in invites
        ]
        return InvitePage(invites=views, page=page, limit=limit, total=total)

    async def _check_member_cap(self, uow: UnitOfWork, org_id: UUID) -> None:
        cap = self._policy.max_members_per_org
        if cap is None:
            return
        members = await uow.memberships.count_by_org(org_id)
        if members >= cap:
            raise Conflict(
                "Organization has reached its member limit",
                code="MEMBER_LIMIT_REACHED",
                details={"limit": cap, "members": members},
            )

    @staticmethod
    async def _invite_in_org(uow: UnitOfWork, org_id: UUID, invite_id: UUID) -> Invite:
        invite = await uow.invites.get(invite_id)
        if invite is None or invite.org_id != org_id:
            raise NotFound("Invitation not found", code="INVITE_NOT_FOUND")
        return invite
