"""Service error taxonomy.

Every business-rule failure is raised as a ServiceError subclass carrying a
stable machine-readable ``code``.  The HTTP layer (tenancy.api.errors) turns
them into ``{"error": message, "code": code, "details": ...}`` with the
class's status code; services never build HTTP responses themselves.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationFailed(ServiceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class PermissionDenied(ServiceError):
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"


class NotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(ServiceError):
    status_code = 409
    code = "CONFLICT"


class InviteLifecycleError(ServiceError):
    """Terminal outcome for one invitation token (not-pending, expired, mismatch)."""

    status_code = 400
    code = "INVITE_NOT_PENDING"


class AccountLocked(ServiceError):
    status_code = 423
    code = "ACCOUNT_LOCKED"


class RateLimited(ServiceError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str, *, retry_after: float, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InfrastructureError(ServiceError):
    """Store, queue or mail transport failure.  The only retryable class."""

    status_code = 500
    code = "INTERNAL_ERROR"
