"""Role hierarchy predicates.

Pure functions; every membership or invitation mutation consults these
before writing.  The order is OWNER > ADMIN > STAFF > CLIENT.
"""

from __future__ import annotations

from uuid import UUID

from tenancy.models.role import Role


def rank(role: Role) -> int:
    return role.rank


def can_assign_role(requester_role: Role, target_role: Role) -> bool:
    """True iff the requester may grant ``target_role`` to someone.

    Strict outranking is required, except that an OWNER may hand out OWNER
    (which always goes through ownership transfer).
    """
    if target_role is Role.OWNER:
        return requester_role is Role.OWNER
    return rank(requester_role) > rank(target_role)


def can_modify_member(
    requester_role: Role,
    target_role: Role,
    requester_user_id: UUID,
    target_user_id: UUID,
) -> bool:
    """True iff the requester may change or remove the target's membership."""
    if requester_user_id == target_user_id:
        return False
    return rank(requester_role) > rank(target_role)


def assignable_roles(requester_role: Role) -> list[Role]:
    """Roles the requester can grant, highest first."""
    return [r for r in Role if can_assign_role(requester_role, r)]
