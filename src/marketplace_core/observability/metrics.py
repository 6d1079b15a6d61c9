"""Prometheus metrics for event delivery and feature flags."""

from __future__ import annotations

from prometheus_client import Counter, Info, start_http_server

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("marketplace_core", "Marketplace core information")

# ---------------------------------------------------------------------------
# Event delivery metrics
# ---------------------------------------------------------------------------

EVENTS_PUBLISHED = Counter(
    "marketplace_events_published_total",
    "Domain events published by use cases",
    ["event_type"],
)

HANDLER_FAILURES = Counter(
    "marketplace_handler_failures_total",
    "Subscriber handler failures",
    ["event_type", "handler"],
)

OUTBOX_WRITE_FAILURES = Counter(
    "marketplace_outbox_write_failures_total",
    "Outbox inserts that failed at publish time",
    ["event_type"],
)

OUTBOX_RECORDS = Counter(
    "marketplace_outbox_records_total",
    "Outbox rows redelivered, by final status",
    ["status"],
)

# ---------------------------------------------------------------------------
# Feature flag metrics
# ---------------------------------------------------------------------------

FLAG_EVALUATIONS = Counter(
    "marketplace_flag_evaluations_total",
    "Feature flag evaluations",
    ["flag", "source", "result"],
)


def start_metrics_server(port: int = 9090, environment: str = "unknown") -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({
        "version": "0.1.0",
        "environment": environment,
    })
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_event_published(event_type: str) -> None:
    EVENTS_PUBLISHED.labels(event_type=event_type).inc()


def record_handler_failure(event_type: str, handler: str) -> None:
    HANDLER_FAILURES.labels(event_type=event_type, handler=handler).inc()


def record_outbox_write_failure(event_type: str) -> None:
    OUTBOX_WRITE_FAILURES.labels(event_type=event_type).inc()


def record_outbox_batch(processed: int, failed: int) -> None:
    """Record the outcome of one outbox batch."""
    if processed:
        OUTBOX_RECORDS.labels(status="processed").inc(processed)
    if failed:
        OUTBOX_RECORDS.labels(status="failed").inc(failed)


def record_flag_evaluation(flag: str, source: str, result: bool) -> None:
    """Record a flag decision and where it came from (env/cache/store/...)."""
    FLAG_EVALUATIONS.labels(flag=flag, source=source, result=str(result).lower()).inc()
