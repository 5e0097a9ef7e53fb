"""
Prometheus metrics for the review reminder engine.

Usage:
    from review_reminder.core.metrics import track_report, track_delivery

    track_report("sent")
    track_delivery("mail", success=True)
"""

from prometheus_client import Counter, Gauge, Histogram

# ==============================================================================
# Installation / Scheduler Metrics
# ==============================================================================

installations_active = Gauge(
    "review_reminder_installations_active",
    "Number of installations with a running engine",
)

triggers_scheduled = Gauge(
    "review_reminder_triggers_scheduled",
    "Number of live report triggers",
    ["installation"],
)

# ==============================================================================
# Report Metrics
# ==============================================================================

reports_generated = Counter(
    "review_reminder_reports_total",
    "Report cycles by outcome",
    ["outcome"],  # sent, empty, failed, skipped
)

deliveries = Counter(
    "review_reminder_deliveries_total",
    "Report deliveries by channel and status",
    ["channel", "status"],
)

# ==============================================================================
# External API Metrics
# ==============================================================================

search_queries = Counter(
    "review_reminder_search_queries_total",
    "External search queries by status",
    ["status"],
)

cache_lookups = Counter(
    "review_reminder_cache_lookups_total",
    "Query cache lookups",
    ["result"],  # hit, miss, shared
)

rate_limiter_wait = Histogram(
    "review_reminder_rate_limiter_wait_seconds",
    "Time a call spent queued in the rate limiter",
    buckets=(0.01, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, float("inf")),
)

# ==============================================================================
# Config Store Metrics
# ==============================================================================

config_writes = Counter(
    "review_reminder_config_writes_total",
    "Settings document writes by status",
    ["status"],  # written, conflict, failed, skipped
)


def track_report(outcome: str) -> None:
    reports_generated.labels(outcome=outcome).inc()


def track_delivery(channel: str, success: bool) -> None:
    deliveries.labels(channel=channel, status="success" if success else "failure").inc()


def track_search(status: str) -> None:
    search_queries.labels(status=status).inc()


def track_cache(result: str) -> None:
    cache_lookups.labels(result=result).inc()


def track_config_write(status: str) -> None:
    config_writes.labels(status=status).inc()
