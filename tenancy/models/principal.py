from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from tenancy.models.role import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller, extracted from a validated access token.

    Org-level fields are filled in by resolve_org_principal when the request
    is scoped to an organization:
        org_id: organization named in the URL
        membership_id / org_role: the caller's membership in that org
    """

    user_id: UUID
    email: str
    org_id: UUID | None = None
    membership_id: UUID | None = None
    org_role: Role | None = None

    def has_at_least(self, role: Role) -> bool:
        return self.org_role is not None and self.org_role.rank >= role.rank
