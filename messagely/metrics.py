"""
Prometheus metrics for the messaging API.

This module provides:
- HTTP request counter (method, path, status)
- Auth outcome counter (action, result)
- Messages sent counter
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# action: register, login
# result: success, conflict, invalid_credentials
auth_requests_total = Counter(
    "auth_requests_total",
    "Total register/login outcomes",
    labelnames=["action", "result"]
)

messages_sent_total = Counter(
    "messages_sent_total",
    "Total messages stored"
)

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
        path: Request path
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


def record_auth_outcome(action: str, result: str) -> None:
    """Record a register/login outcome."""
    auth_requests_total.labels(action=action, result=result).inc()


def record_message_sent() -> None:
    messages_sent_total.inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
