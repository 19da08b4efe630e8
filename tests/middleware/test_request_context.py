from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from tenancy.middleware.request_context import (
    RequestContextFilter,
    install_request_context_filter,
    request_id_var,
)


def test_request_id_generated(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "trace-42"})
    assert resp.headers["x-request-id"] == "trace-42"


def test_request_id_on_error_responses(client: TestClient) -> None:
    resp = client.get("/organizations")
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_filter_stamps_current_request_id() -> None:
    record = logging.LogRecord("t", logging.INFO, "f.py", 1, "m", (), None)
    token = request_id_var.set("req-7")
    try:
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-7"  # type: ignore[attr-defined]

    RequestContextFilter().filter(record)
    assert record.request_id == "-"  # type: ignore[attr-defined]


def test_install_filter_is_idempotent() -> None:
    root = logging.getLogger()
    install_request_context_filter()
    install_request_context_filter()
    assert sum(isinstance(f, RequestContextFilter) for f in root.filters) == 1


def test_request_is_logged_with_id(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="tenancy.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "trace-9"})

    records = [
        r for r in caplog.records if r.name == "tenancy.middleware.request_context"
    ]
    assert records
    assert records[-1].status_code == 200  # type: ignore[attr-defined]
    assert records[-1].path == "/health"  # type: ignore[attr-defined]
    assert "GET /health -> 200" in records[-1].getMessage()
