"""
Prometheus metrics for the conversation store API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message operation and preview resync counters
- Analytics ingestion and erasure counters

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# operation: create, update, delete
message_operations_total = Counter(
    "message_operations_total",
    "Message mutations applied to the store",
    labelnames=["operation"]
)

# reason: create, edit, delete
preview_resync_total = Counter(
    "preview_resync_total",
    "Conversation preview recomputations",
    labelnames=["reason"]
)

# result: ingested, duplicate
analytics_events_total = Counter(
    "analytics_events_total",
    "Analytics events seen by ingestion",
    labelnames=["result"]
)

analytics_events_deleted_total = Counter(
    "analytics_events_deleted_total",
    "Analytics events removed by per-user erasure"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known (e.g. /api/messages/{message_id}), else raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_operation(operation: str) -> None:
    message_operations_total.labels(operation=operation).inc()


def record_preview_resync(reason: str) -> None:
    preview_resync_total.labels(reason=reason).inc()


def record_analytics_ingestion(ingested: int, duplicates: int) -> None:
    """
    Record the outcome of one ingestion batch.

    Args:
        ingested: Events stored for the first time
        duplicates: Events skipped because their eventId was already stored
    """
    if ingested:
        analytics_events_total.labels(result="ingested").inc(ingested)
    if duplicates:
        analytics_events_total.labels(result="duplicate").inc(duplicates)


def record_analytics_deletion(count: int) -> None:
    analytics_events_deleted_total.inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type string for Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
