"""Organizations: listing, creation, settings and deletion.

The creator of an organization becomes its OWNER in the same transaction
that inserts the organization row.  Slugs are unique case-insensitively;
at creation a slug that is already taken, whether supplied or generated,
gets ``-1``, ``-2``, ... appended.  Renaming to a taken slug is refused
with ``SLUG_CONFLICT``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from tenancy.core.clock import Clock, utcnow
from tenancy.core.config import TenancyPolicy
from tenancy.core.errors import Conflict, PermissionDenied, ValidationFailed
from tenancy.models.organization import Membership, Organization
from tenancy.models.role import Role
from tenancy.models.work_record import WorkCounts
from tenancy.repos.base import StoreConflictError
from tenancy.repos.store import Store
from tenancy.services.membership_store import lock_org, require_membership
from tenancy.services.role_hierarchy import assignable_roles

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100
SLUG_MAX_LENGTH = 50
SLUG_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{1,48}[a-zA-Z0-9]$")
_SLUG_ATTEMPTS = 100


def generate_slug(name: str) -> str:
    """``"Acme  Corp!"`` -> ``"acme-corp"``.  Always a valid slug."""
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug[:SLUG_MAX_LENGTH].strip("-")
    if len(slug) < 3:
        slug = f"{slug}-org".strip("-") if slug else "org"
    if len(slug) < 3:
        slug = "org"
    return slug


def _with_suffix(slug: str, n: int) -> str:
    suffix = f"-{n}"
    return slug[: SLUG_MAX_LENGTH - len(suffix)].rstrip("-") + suffix


def validate_name(name: str) -> str:
    name = name.strip()
    if not name or len(name) > NAME_MAX_LENGTH:
        raise ValidationFailed(
            f"Organization name must be 1-{NAME_MAX_LENGTH} characters",
            details=[{"field": "name", "message": "invalid length"}],
        )
    return name


def validate_slug(slug: str) -> str:
    slug = slug.strip()
    if not SLUG_PATTERN.match(slug):
        raise ValidationFailed(
            "Slug must be 3-50 letters, digits or hyphens and cannot start or "
            "end with a hyphen",
            details=[{"field": "slug", "message": "invalid format"}],
        )
    return slug.lower()


def _creation_slug(slug: str | None, name: str) -> str:
    # A missing or malformed slug on create falls back to one derived from the name.
    if slug and SLUG_PATTERN.match(slug.strip()):
        return slug.strip().lower()
    return generate_slug(name)


@dataclass(frozen=True, slots=True)
class OrgSummary:
    org: Organization
    role: Role
    membership_id: UUID
    member_count: int


@dataclass(frozen=True, slots=True)
class OrgDetail:
    org: Organization
    membership: Membership
    member_count: int
    work: WorkCounts

    @property
    def assignable_roles(self) -> list[Role]:
        return assignable_roles(self.membership.role)


class OrganizationService:
    def __init__(
        self,
        store: Store,
        *,
        policy: TenancyPolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._policy = policy or TenancyPolicy()
        self._clock = clock

    async def list_for_user(self, user_id: UUID) -> list[OrgSummary]:
        async with self._store.transaction() as uow:
            memberships = await uow.memberships.list_by_user(user_id)
            org_ids = [m.org_id for m in memberships]
            orgs = await uow.orgs.get_many(org_ids)
            counts = await uow.memberships.count_by_orgs(org_ids)

        summaries = [
            OrgSummary(
                org=orgs[m.org_id],
                role=m.role,
                membership_id=m.id,
                member_count=counts.get(m.org_id, 0),
            )
            for m in memberships
            if m.org_id in orgs
        ]
        summaries.sort(key=lambda s: (-s.role.rank, s.org.name.lower()))
        return summaries

    async def create(
        self, user_id: UUID, name: str, slug: str | None = None
    ) -> OrgSummary:
        if not self._policy.allow_org_creation:
            raise PermissionDenied(
                "Organization creation is disabled", code="ORG_CREATION_DISABLED"
            )
        name = validate_name(name)
        base = _creation_slug(slug, name)
        now = self._clock()

        async with self._store.transaction() as uow:
            candidate = base
            n = 0
            while await uow.orgs.get_by_slug(candidate) is not None:
                n += 1
                if n > _SLUG_ATTEMPTS:
                    raise Conflict("Could not find a free slug", code="SLUG_CONFLICT")
                candidate = _with_suffix(base, n)

            org = Organization.new(
                name=name, slug=candidate, created_by=user_id, now=now
            )
            owner = Membership.new(
                org_id=org.id, user_id=user_id, role=Role.OWNER, now=now
            )
            try:
                await uow.orgs.add(org)
            except StoreConflictError:
                raise Conflict(
                    f"Slug {candidate!r} is already taken",
                    code="SLUG_CONFLICT",
                    details={"slug": candidate},
                ) from None
            await uow.memberships.add(owner)

        logger.info(
            "Organization created org=%s slug=%s owner=%s", org.id, org.slug, user_id
        )
        return OrgSummary(org=org, role=Role.OWNER, membership_id=owner.id, member_count=1)

    async def get(self, org_id: UUID, user_id: UUID) -> OrgDetail:
        async with self._store.transaction() as uow:
            org = await lock_org(uow, org_id)
            membership = await require_membership(uow, org_id, user_id)
            member_count = await uow.memberships.count_by_org(org_id)
            work = await uow.work.counts_for_org(org_id)
        return OrgDetail(
            org=org, membership=membership, member_count=member_count, work=work
        )

    async def update(
        self,
        org_id: UUID,
        user_id: UUID,
        *,
        name: str | None = None,
        slug: str | None = None,
    ) -> Organization:
        now = self._clock()
        async with self._store.transaction() as uow:
            org = await lock_org(uow, org_id)
            membership = await require_membership(uow, org_id, user_id)
            if membership.role.rank < Role.ADMIN.rank:
                raise PermissionDenied("Requires ADMIN role or higher")

            new_name = validate_name(name) if name is not None else org.name
            new_slug = validate_slug(slug) if slug is not None else org.slug
            try:
                updated = await uow.orgs.update(
                    org_id, name=new_name, slug=new_slug, updated_at=now
                )
            except StoreConflictError:
                raise Conflict(
                    f"Slug {new_slug!r} is already taken",
                    code="SLUG_CONFLICT",
                    details={"slug": new_slug},
                ) from None

        logger.info("Organization updated org=%s by=%s", org_id, user_id)
        return updated  # type: ignore[return-value]

    async def delete(self, org_id: UUID, user_id: UUID, *, force: bool = False) -> None:
        async with self._store.transaction() as uow:
            await lock_org(uow, org_id)
            membership = await require_membership(uow, org_id, user_id)
            if membership.role is not Role.OWNER:
                raise PermissionDenied(
                    "Only the organization owner can delete it",
                    code="INSUFFICIENT_PERMISSIONS",
                )

            member_count = await uow.memberships.count_by_org(org_id)
            work = await uow.work.counts_for_org(org_id)
            if (member_count > 1 or work.total) and not force:
                raise Conflict(
                    "Organization still has members or data; pass force=true",
                    code="ORG_NOT_EMPTY",
                    details={
                        "members": member_count,
                        "tasks": work.tasks,
                        "time_entries": work.time_entries,
                    },
                )
            await uow.orgs.delete(org_id)

        logger.warning("Organization deleted org=%s by=%s force=%s", org_id, user_id, force)
