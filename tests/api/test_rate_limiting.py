from __future__ import annotations

from fastapi.testclient import TestClient


def _register(client: TestClient, n: int):
    return client.post(
        "/auth/register",
        json={"email": f"user{n}@x.com", "name": f"User {n}", "password": "long-enough"},
    )


def test_limit_headers_on_allowed_request(client: TestClient) -> None:
    resp = _register(client, 0)
    assert resp.status_code == 201
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "4"


def test_register_burst_is_capped(client: TestClient) -> None:
    statuses = [_register(client, n).status_code for n in range(5)]
    assert statuses == [201] * 5

    blocked = _register(client, 5)
    assert blocked.status_code == 429
    body = blocked.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["details"]["retry_after_seconds"] > 0
    assert int(blocked.headers["Retry-After"]) >= 1


def test_scopes_have_separate_buckets(client: TestClient) -> None:
    for n in range(5):
        _register(client, n)
    assert _register(client, 5).status_code == 429

    # login has its own bucket
    resp = client.post("/auth/login", json={"email": "user0@x.com", "password": "long-enough"})
    assert resp.status_code == 200
