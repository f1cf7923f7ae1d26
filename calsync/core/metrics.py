"""Application metrics using the Prometheus client library.

All metrics are defined here so there is a single inventory of what the
service measures.  Modules import the metric they own and increment it
at the point of action.

HTTP metrics are populated by the MetricsMiddleware.  The sync metrics
answer the operational questions this service exists to answer:

  - Is the external platform healthy?         EXTERNAL_CALLS / _DURATION
  - Are organizations provisioning cleanly?   SAGA_RUNS
  - Is anything orphaned right now?           COMPENSATION_FAILURES
  - Are we creating accounts or reusing them? IDENTITY_RESOLUTIONS

COMPENSATION_FAILURES should be alerted on at any non-zero rate: each
increment is a tenant or team that someone has to delete by hand.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
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
# External platform
# ---------------------------------------------------------------------------

EXTERNAL_CALLS = Counter(
    "scheduling_platform_calls_total",
    "Calls to the external scheduling platform",
    ["operation", "outcome"],  # outcome: ok|conflict|error|transport_error
)

EXTERNAL_CALL_DURATION = Histogram(
    "scheduling_platform_call_duration_seconds",
    "Latency of calls to the external scheduling platform",
    ["operation"],
    # External SaaS latency: mostly 100ms-1s, timeouts at the client limit
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

SAGA_RUNS = Counter(
    "provisioning_saga_runs_total",
    "Organization provisioning attempts by outcome",
    ["outcome"],  # succeeded|compensated|compensation_failed|rejected
)

COMPENSATION_FAILURES = Counter(
    "provisioning_compensation_failures_total",
    "Saga compensations that raised, leaving an orphaned resource",
    ["step"],
)

IDENTITY_RESOLUTIONS = Counter(
    "identity_resolutions_total",
    "External identity resolutions by result",
    ["result"],  # found|created|conflict_reused
)

MEMBERSHIP_RECONCILIATIONS = Counter(
    "membership_reconciliations_total",
    "Membership reconciliations by outcome",
    ["outcome"],  # created|updated|unchanged
)

BOOKINGS = Counter(
    "bookings_total",
    "Booking attempts by outcome",
    ["outcome"],  # confirmed|failed|deduplicated
)

BOOKING_STATUS_UPDATES = Counter(
    "booking_status_updates_total",
    "Asynchronous booking status notifications by result",
    ["result"],  # applied|unmatched|invalid
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
