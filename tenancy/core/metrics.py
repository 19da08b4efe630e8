"""Application metrics (Prometheus).

Single inventory of everything the service measures.  Other modules import
the metric they own and increment/observe it at the point of action; the
/metrics endpoint exposes the default registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Tenancy metrics
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)

LOGIN_ATTEMPTS = Counter(
    "login_attempts_total",
    "Login attempts by outcome",
    ["result"],  # "success", "invalid", "locked"
)

ACCOUNT_LOCKOUTS = Counter(
    "account_lockouts_total",
    "Identifiers locked after repeated authentication failures",
)

INVITE_TRANSITIONS = Counter(
    "invite_transitions_total",
    "Invitation state changes by resulting status",
    ["status"],  # PENDING (created), ACCEPTED, EXPIRED, REVOKED
)

OWNERSHIP_TRANSFERS = Counter(
    "ownership_transfers_total",
    "Ownership transfer attempts by outcome",
    ["result"],  # "success" or the error code
)

MEMBERSHIP_CHANGES = Counter(
    "membership_changes_total",
    "Membership mutations by kind",
    ["kind"],  # "role_update", "removed", "left", "joined"
)

NOTIFICATIONS = Counter(
    "notifications_total",
    "Outbound notifications by kind and outcome",
    ["kind", "result"],  # result: "queued", "failed", "sent", "send_failed"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
