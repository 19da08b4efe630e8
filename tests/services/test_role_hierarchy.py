from __future__ import annotations

from uuid import uuid4

import pytest

from tenancy.models.role import INVITABLE_ROLES, Role
from tenancy.services.role_hierarchy import (
    assignable_roles,
    can_assign_role,
    can_modify_member,
    rank,
)


def test_ranks_are_strictly_ordered() -> None:
    assert rank(Role.OWNER) > rank(Role.ADMIN) > rank(Role.STAFF) > rank(Role.CLIENT)


def test_only_owner_can_assign_owner() -> None:
    assert can_assign_role(Role.OWNER, Role.OWNER) is True
    for role in (Role.ADMIN, Role.STAFF, Role.CLIENT):
        assert can_assign_role(role, Role.OWNER) is False


# (requester, target, expected)
_ASSIGN_CASES = [
    (Role.OWNER, Role.ADMIN, True),
    (Role.OWNER, Role.STAFF, True),
    (Role.OWNER, Role.CLIENT, True),
    (Role.ADMIN, Role.ADMIN, False),
    (Role.ADMIN, Role.STAFF, True),
    (Role.ADMIN, Role.CLIENT, True),
    (Role.STAFF, Role.STAFF, False),
    (Role.STAFF, Role.CLIENT, True),
    (Role.CLIENT, Role.CLIENT, False),
]


@pytest.mark.parametrize(
    "requester,target,expected",
    _ASSIGN_CASES,
    ids=[f"{r.value}->{t.value}" for r, t, _ in _ASSIGN_CASES],
)
def test_can_assign_role(requester: Role, target: Role, expected: bool) -> None:
    assert can_assign_role(requester, target) is expected


def test_nobody_modifies_themselves() -> None:
    me = uuid4()
    for role in Role:
        assert can_modify_member(role, Role.CLIENT, me, me) is False


def test_modify_requires_outranking_the_target() -> None:
    a, b = uuid4(), uuid4()
    assert can_modify_member(Role.OWNER, Role.ADMIN, a, b) is True
    assert can_modify_member(Role.ADMIN, Role.STAFF, a, b) is True
    assert can_modify_member(Role.ADMIN, Role.ADMIN, a, b) is False
    assert can_modify_member(Role.ADMIN, Role.OWNER, a, b) is False
    assert can_modify_member(Role.CLIENT, Role.CLIENT, a, b) is False


def test_assignable_roles_highest_first() -> None:
    assert assignable_roles(Role.OWNER) == [Role.OWNER, Role.ADMIN, Role.STAFF, Role.CLIENT]
    assert assignable_roles(Role.ADMIN) == [Role.STAFF, Role.CLIENT]
    assert assignable_roles(Role.CLIENT) == []


def test_owner_is_not_invitable() -> None:
    assert Role.OWNER not in INVITABLE_ROLES


def test_unknown_role_rejected_at_the_boundary() -> None:
    with pytest.raises(ValueError):
        Role("SUPERUSER")
