"""Exception handlers: every error leaves the service as

    {"error": <human message>, "code": <MACHINE_CODE>, "details": <optional>}

ServiceError subclasses carry their own status and code.  FastAPI request
validation failures become 400 VALIDATION_ERROR with per-field details,
Starlette HTTPExceptions keep their status and headers, and anything else
is logged with its stack trace and reported as a generic 500.
"""

from __future__ import annotations

import logging
import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenancy.core.errors import RateLimited, ServiceError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHENTICATED",
    403: "INSUFFICIENT_PERMISSIONS",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}


def _error(status_code: int, payload: dict, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(max(math.ceil(exc.retry_after), 1))}
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.message,
            exc.code,
        )
    return _error(exc.status_code, exc.to_payload(), headers)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "invalid value"),
        }
        for err in exc.errors()
    ]
    return _error(
        400,
        {"error": "Invalid request", "code": "VALIDATION_ERROR", "details": details},
    )


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = _HTTP_CODES.get(
        exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "ERROR"
    )
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error(
        exc.status_code,
        {"error": message, "code": code},
        getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, {"error": "Internal server error", "code": "INTERNAL_ERROR"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
