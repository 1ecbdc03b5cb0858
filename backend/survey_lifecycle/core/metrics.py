"""Prometheus metric definitions for the survey lifecycle service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ── Application info ────────────────────────────────────────────────
app_info = Info("survey_lifecycle", "Survey lifecycle service metadata")

# ── HTTP request metrics ────────────────────────────────────────────
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method"],
)

# ── Database pool metrics ───────────────────────────────────────────
db_pool_size = Gauge("db_pool_size", "Current number of connections in the pool")
db_pool_checked_in = Gauge("db_pool_checked_in", "Connections currently idle in the pool")
db_pool_checked_out = Gauge("db_pool_checked_out", "Connections currently in use")
db_pool_overflow = Gauge("db_pool_overflow", "Current overflow connections beyond pool_size")

# ── Survey status engine ────────────────────────────────────────────
survey_status_transitions_total = Counter(
    "survey_status_transitions_total",
    "Survey status transitions committed",
    ["from_status", "to_status"],
)

survey_status_rejections_total = Counter(
    "survey_status_rejections_total",
    "Status or review-permission requests rejected, by error kind",
    ["kind"],
)

survey_auto_closed_total = Counter(
    "survey_auto_closed_total",
    "Surveys whose stored status was synchronized to closed after the deadline passed",
)

survey_persistence_failures_total = Counter(
    "survey_persistence_failures_total",
    "Survey operations aborted because the store write failed",
    ["operation"],
)
