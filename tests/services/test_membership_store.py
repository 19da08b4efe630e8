from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from tenancy.core.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from tenancy.models.role import Role
from tenancy.services.membership_store import MembershipStore, clamp_paging
from tenancy.services.ownership_transfer import OwnershipTransferCoordinator
from tests.support import (
    add_test_task,
    add_test_time_entry,
    membership_of,
    owners_of,
    team,
)


@pytest.fixture
def members(store, clock) -> MembershipStore:
    return MembershipStore(
        store, OwnershipTransferCoordinator(store, clock=clock), clock=clock
    )


@pytest.fixture
def t(store) -> dict:
    return team(store)


def test_clamp_paging() -> None:
    assert clamp_paging(0, 0) == (1, 1)
    assert clamp_paging(3, 500) == (3, 100)
    assert clamp_paging(-2, 20) == (1, 20)


# --- reads ---


def test_list_members_orders_by_rank_and_flags_modifiable(members, t) -> None:
    page = asyncio.run(members.list_members(t["org"].id, t["users"]["admin"].id))

    assert page.total == 4
    assert [e.membership.role for e in page.members] == [
        Role.OWNER,
        Role.ADMIN,
        Role.STAFF,
        Role.CLIENT,
    ]
    modifiable = {e.membership.role: e.can_modify for e in page.members}
    assert modifiable == {
        Role.OWNER: False,
        Role.ADMIN: False,  # the requester themselves
        Role.STAFF: True,
        Role.CLIENT: True,
    }


def test_list_members_filters_and_paginates(members, t) -> None:
    org_id, admin_id = t["org"].id, t["users"]["admin"].id

    staff_only = asyncio.run(members.list_members(org_id, admin_id, role=Role.STAFF))
    assert [e.user.email for e in staff_only.members] == ["staff@test-org.com"]

    by_name = asyncio.run(members.list_members(org_id, admin_id, search="cleo"))
    assert [e.membership.role for e in by_name.members] == [Role.CLIENT]

    page2 = asyncio.run(members.list_members(org_id, admin_id, page=2, limit=3))
    assert len(page2.members) == 1
    assert page2.pages == 2


def test_list_members_requires_membership(members, t) -> None:
    with pytest.raises(PermissionDenied) as exc:
        asyncio.run(members.list_members(t["org"].id, t["users"]["outsider"].id))
    assert exc.value.code == "NOT_MEMBER"


def test_get_member_includes_work_counts(members, store, t) -> None:
    add_test_task(store, t["org"], t["users"]["staff"])
    add_test_time_entry(store, t["org"], t["users"]["staff"])
    add_test_time_entry(store, t["org"], t["users"]["staff"])

    detail = asyncio.run(
        members.get_member(
            t["org"].id, t["memberships"]["staff"].id, t["users"]["admin"].id
        )
    )
    assert detail.entry.user.id == t["users"]["staff"].id
    assert detail.work.tasks == 1
    assert detail.work.time_entries == 2


def test_get_member_of_other_org_is_not_found(members, store, t) -> None:
    other = team(store, "other-org")
    with pytest.raises(NotFound) as exc:
        asyncio.run(
            members.get_member(
                t["org"].id, other["memberships"]["staff"].id, t["users"]["admin"].id
            )
        )
    assert exc.value.code == "MEMBER_NOT_FOUND"


# --- update_role ---


def test_admin_promotes_client_to_staff(members, store, t) -> None:
    updated = asyncio.run(
        members.update_role(
            t["org"].id, t["memberships"]["client"].id, Role.STAFF, t["users"]["admin"].id
        )
    )
    assert updated.role is Role.STAFF
    assert store.state.memberships[updated.id].role is Role.STAFF


# (requester, target, new_role, expected_code)
_DENIED_UPDATES = [
    ("admin", "admin", Role.STAFF, "CANNOT_MODIFY_SELF"),
    ("admin", "staff", Role.ADMIN, "INSUFFICIENT_PERMISSIONS"),
    ("admin", "staff", Role.OWNER, "INSUFFICIENT_PERMISSIONS"),
    ("admin", "owner", Role.STAFF, "CANNOT_MODIFY_HIGHER_ROLE"),
    ("staff", "admin", Role.CLIENT, "CANNOT_MODIFY_HIGHER_ROLE"),
]


@pytest.mark.parametrize(
    "requester,target,new_role,code",
    _DENIED_UPDATES,
    ids=[f"{r}->{tg}:{n.value}" for r, tg, n, _ in _DENIED_UPDATES],
)
def test_update_role_denied(members, store, t, requester, target, new_role, code) -> None:
    before = dict(store.state.memberships)
    with pytest.raises(PermissionDenied) as exc:
        asyncio.run(
            members.update_role(
                t["org"].id,
                t["memberships"][target].id,
                new_role,
                t["users"][requester].id,
            )
        )
    assert exc.value.code == code
    assert store.state.memberships == before


def test_update_role_to_owner_transfers_ownership(members, store, t) -> None:
    updated = asyncio.run(
        members.update_role(
            t["org"].id, t["memberships"]["admin"].id, Role.OWNER, t["users"]["owner"].id
        )
    )
    assert updated.role is Role.OWNER
    assert membership_of(store, t["org"], t["users"]["owner"]).role is Role.ADMIN
    assert store.state.orgs[t["org"].id].created_by == t["users"]["admin"].id
    assert len(owners_of(store, t["org"].id)) == 1


def test_update_role_to_same_role_is_a_no_op(members, store, t) -> None:
    target = t["memberships"]["staff"]
    result = asyncio.run(
        members.update_role(t["org"].id, target.id, Role.STAFF, t["users"]["admin"].id)
    )
    assert result == target


def test_update_role_unknown_membership(members, t) -> None:
    with pytest.raises(NotFound):
        asyncio.run(
            members.update_role(t["org"].id, uuid4(), Role.STAFF, t["users"]["admin"].id)
        )


# --- remove_member ---


def test_remove_member_without_data(members, store, t) -> None:
    result = asyncio.run(
        members.remove_member(
            t["org"].id, t["memberships"]["client"].id, t["users"]["admin"].id
        )
    )
    assert result.reassigned_tasks == 0
    assert t["memberships"]["client"].id not in store.state.memberships


def test_remove_member_with_data_requires_force(members, store, t) -> None:
    add_test_task(store, t["org"], t["users"]["staff"])
    add_test_time_entry(store, t["org"], t["users"]["staff"])

    with pytest.raises(Conflict) as exc:
        asyncio.run(
            members.remove_member(
                t["org"].id, t["memberships"]["staff"].id, t["users"]["admin"].id
            )
        )
    assert exc.value.code == "MEMBER_HAS_DATA"
    assert exc.value.details == {"tasks": 1, "time_entries": 1}
    assert t["memberships"]["staff"].id in store.state.memberships


def test_forced_removal_reassigns_tasks_to_requester(members, store, t) -> None:
    task = add_test_task(store, t["org"], t["users"]["staff"])

    result = asyncio.run(
        members.remove_member(
            t["org"].id,
            t["memberships"]["staff"].id,
            t["users"]["admin"].id,
            force=True,
        )
    )
    assert result.reassigned_tasks == 1
    assert result.reassigned_to == t["users"]["admin"].id
    assert store.state.tasks[task.id].created_by == t["users"]["admin"].id
    assert t["memberships"]["staff"].id not in store.state.memberships


@pytest.mark.parametrize(
    "requester,target,exc_type,code",
    [
        ("admin", "admin", PermissionDenied, "CANNOT_REMOVE_SELF"),
        ("admin", "owner", Conflict, "CANNOT_REMOVE_OWNER"),
        ("owner", "owner", PermissionDenied, "CANNOT_REMOVE_SELF"),
        ("staff", "admin", PermissionDenied, "CANNOT_MODIFY_HIGHER_ROLE"),
    ],
)
def test_remove_member_denied(members, store, t, requester, target, exc_type, code) -> None:
    with pytest.raises(exc_type) as exc:
        asyncio.run(
            members.remove_member(
                t["org"].id, t["memberships"][target].id, t["users"][requester].id
            )
        )
    assert exc.value.code == code
    assert t["memberships"][target].id in store.state.memberships


# --- leave_organization ---


def test_sole_owner_cannot_leave(members, t) -> None:
    with pytest.raises(Conflict) as exc:
        asyncio.run(members.leave_organization(t["users"]["owner"].id, t["org"].id))
    assert exc.value.code == "SOLE_OWNER"


def test_member_without_tasks_leaves(members, store, t) -> None:
    asyncio.run(members.leave_organization(t["users"]["client"].id, t["org"].id))
    assert membership_of(store, t["org"], t["users"]["client"]) is None


def test_leaving_with_tasks_requires_reassignment(members, store, t) -> None:
    task = add_test_task(store, t["org"], t["users"]["staff"])

    with pytest.raises(Conflict) as exc:
        asyncio.run(members.leave_organization(t["users"]["staff"].id, t["org"].id))
    assert exc.value.code == "REASSIGNMENT_REQUIRED"

    result = asyncio.run(
        members.leave_organization(
            t["users"]["staff"].id, t["org"].id, reassign_to=t["users"]["admin"].id
        )
    )
    assert result.reassigned_tasks == 1
    assert store.state.tasks[task.id].created_by == t["users"]["admin"].id
    assert membership_of(store, t["org"], t["users"]["staff"]) is None


@pytest.mark.parametrize("who", ["self", "outsider"])
def test_leave_rejects_invalid_reassign_target(members, store, t, who) -> None:
    staff = t["users"]["staff"]
    target = staff.id if who == "self" else t["users"]["outsider"].id
    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(members.leave_organization(staff.id, t["org"].id, reassign_to=target))
    assert exc.value.code == "INVALID_REASSIGN_TARGET"
    assert membership_of(store, t["org"], staff) is not None


def test_time_entries_stay_with_the_leaving_user(members, store, t) -> None:
    entry = add_test_time_entry(store, t["org"], t["users"]["staff"])
    asyncio.run(members.leave_organization(t["users"]["staff"].id, t["org"].id))
    assert store.state.time_entries[entry.id].user_id == t["users"]["staff"].id
