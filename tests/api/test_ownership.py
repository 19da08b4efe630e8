"""Leaving an organization and handing ownership over."""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tenancy.models.role import Role
from tests.support import add_test_task, auth, membership_of, owners_of, team


def test_sole_owner_must_transfer_before_leaving(client: TestClient, store) -> None:
    t = team(store)
    org_url = f"/organizations/{t['org'].id}"
    owner = auth(t["users"]["owner"])

    refused = client.post(f"{org_url}/leave", headers=owner)
    assert refused.status_code == 409
    assert refused.json()["code"] == "SOLE_OWNER"

    transferred = client.post(
        f"{org_url}/transfer-ownership",
        headers=owner,
        json={"new_owner_id": str(t["users"]["staff"].id)},
    )
    assert transferred.status_code == 200
    body = transferred.json()
    assert body["new_owner"]["user_id"] == str(t["users"]["staff"].id)
    assert body["new_owner"]["role"] == "OWNER"
    assert body["previous_owner"]["role"] == "ADMIN"

    left = client.post(f"{org_url}/leave", headers=owner)
    assert left.status_code == 200
    assert left.json()["left"] is True
    assert membership_of(store, t["org"], t["users"]["owner"]) is None
    assert [m.user_id for m in owners_of(store, t["org"].id)] == [t["users"]["staff"].id]
    assert store.state.orgs[t["org"].id].created_by == t["users"]["staff"].id


@pytest.mark.parametrize(
    "caller, code",
    [
        ("admin", "OWNER_ONLY_TRANSFER"),
        ("staff", "OWNER_ONLY_TRANSFER"),
        ("client", "OWNER_ONLY_TRANSFER"),
        ("outsider", "NOT_MEMBER"),
    ],
)
def test_non_owner_cannot_transfer(client: TestClient, store, caller, code) -> None:
    t = team(store)
    resp = client.post(
        f"/organizations/{t['org'].id}/transfer-ownership",
        headers=auth(t["users"][caller]),
        json={"new_owner_id": str(t["users"]["staff"].id)},
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == code
    assert [m.user_id for m in owners_of(store, t["org"].id)] == [t["users"]["owner"].id]


def test_transfer_to_non_member(client: TestClient, store) -> None:
    t = team(store)
    resp = client.post(
        f"/organizations/{t['org'].id}/transfer-ownership",
        headers=auth(t["users"]["owner"]),
        json={"new_owner_id": str(uuid4())},
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "MEMBER_NOT_FOUND"


def test_leave_with_tasks_needs_reassignment(client: TestClient, store) -> None:
    t = team(store)
    add_test_task(store, t["org"], t["users"]["staff"])
    url = f"/organizations/{t['org'].id}/leave"
    staff = auth(t["users"]["staff"])

    refused = client.post(url, headers=staff)
    assert refused.status_code == 409
    assert refused.json()["code"] == "REASSIGNMENT_REQUIRED"
    assert refused.json()["details"] == {"tasks": 1}

    bad_target = client.post(
        url, headers=staff, json={"reassign_to": str(t["users"]["outsider"].id)}
    )
    assert bad_target.status_code == 400
    assert bad_target.json()["code"] == "INVALID_REASSIGN_TARGET"

    left = client.post(
        url, headers=staff, json={"reassign_to": str(t["users"]["client"].id)}
    )
    assert left.status_code == 200
    assert left.json()["reassigned_tasks"] == 1
    assert left.json()["reassigned_to"] == str(t["users"]["client"].id)
    assert membership_of(store, t["org"], t["users"]["staff"]) is None


def test_outsider_cannot_leave(client: TestClient, store) -> None:
    t = team(store)
    resp = client.post(
        f"/organizations/{t['org'].id}/leave", headers=auth(t["users"]["outsider"])
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "NOT_MEMBER"


def test_promoted_owner_sees_owner_role(client: TestClient, store) -> None:
    t = team(store)
    client.post(
        f"/organizations/{t['org'].id}/transfer-ownership",
        headers=auth(t["users"]["owner"]),
        json={"new_owner_id": str(t["users"]["client"].id)},
    )
    detail = client.get(
        f"/organizations/{t['org'].id}", headers=auth(t["users"]["client"])
    ).json()
    assert detail["role"] == Role.OWNER.value
    assert detail["created_by"] == str(t["users"]["client"].id)
