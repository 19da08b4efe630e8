"""Every failure leaves the service as {error, code, details?}."""

from __future__ import annotations

from fastapi.testclient import TestClient

from tenancy.main import create_app
from tests.support import auth, create_test_user


def test_unknown_path(client: TestClient) -> None:
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "code": "NOT_FOUND"}


def test_method_not_allowed(client: TestClient) -> None:
    resp = client.put("/health")
    assert resp.status_code == 405
    assert resp.json()["code"] == "METHOD_NOT_ALLOWED"


def test_missing_token(client: TestClient) -> None:
    resp = client.get("/organizations")
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHENTICATED"
    assert resp.headers["www-authenticate"] == "Bearer"


def test_garbage_token(client: TestClient) -> None:
    resp = client.get("/organizations", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token", "code": "UNAUTHENTICATED"}


def test_malformed_path_param(client: TestClient, store) -> None:
    user = create_test_user(store, "a@b.com")
    resp = client.get("/organizations/not-a-uuid", headers=auth(user))
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"][0]["field"] == "path.org_id"


def test_unexpected_exception_is_generic_500(container) -> None:
    app = create_app(container=container)

    @app.get("/explode")
    async def explode() -> None:
        raise RuntimeError("secret internals")

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.get("/explode")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "code": "INTERNAL_ERROR"}
    assert "secret" not in resp.text
