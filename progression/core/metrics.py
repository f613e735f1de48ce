"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own the
behavior import and increment them.  HTTP metrics are filled in by
MetricsMiddleware, the rest by the progression engine and the worker.
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
# Progression engine
# ---------------------------------------------------------------------------

LESSON_COMPLETIONS = Counter(
    "lesson_completions_total",
    "Lessons transitioned to completed (repeat completions are not counted)",
)

COURSE_COMPLETIONS = Counter(
    "course_completions_total",
    "Courses transitioned to completed for a learner",
)

UNLOCK_DECISIONS = Counter(
    "unlock_decisions_total",
    "Unlock checks by entity type and outcome",
    ["entity", "result"],  # entity: lesson|module|test, result: unlocked|locked
)

COURSE_RECALCULATIONS = Counter(
    "course_recalculations_total",
    "Per-learner course progress recalculations by outcome",
    ["result"],  # "ok" or "failed"
)

RECALCULATION_DURATION = Histogram(
    "course_recalculation_seconds",
    "Duration of a full course recalculation across enrolled learners",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0],
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
