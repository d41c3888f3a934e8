"""
Prometheus metrics for the inbox API.

This module provides:
- HTTP request counter (method, path, status)
- Webhook outcome counter (kind, result)
- Status transition counter (outcome)
- Live event counter (event)
- Request latency histogram (method, path)

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

# kind: message, status, ignored
# result: created, duplicate, applied, redundant, out_of_order, not_found,
#         ignored, validation_error, invalid_status
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["kind", "result"]
)

# outcome: applied, redundant, out_of_order, not_found, invalid_status
status_transitions_total = Counter(
    "status_transitions_total",
    "Status transition requests by outcome",
    labelnames=["outcome"]
)

live_events_total = Counter(
    "live_events_total",
    "Events published to live conversation channels",
    labelnames=["event"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known (e.g. /conversations/{conversation_id}/messages)
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
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


def record_webhook_outcome(kind: str, result: str) -> None:
    """Record a webhook processing outcome."""
    webhook_requests_total.labels(kind=kind, result=result).inc()


def record_status_transition(outcome: str) -> None:
    """Record the outcome of a status transition request."""
    status_transitions_total.labels(outcome=outcome).inc()


def record_live_event(event: str) -> None:
    """Record an event published to a live channel."""
    live_events_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type for the Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
