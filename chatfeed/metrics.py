"""
Prometheus metrics for the chat transport.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Live event counters (topic) and subscriber overflow counter (topic)
- Active subscription gauge (topic)
- Message creation counter (origin) and status transition counter (status)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# Events published on the broker, by topic
events_published_total = Counter(
    "events_published_total",
    "Total live events published",
    labelnames=["topic"]
)

# Subscribers dropped because their bounded queue was full
subscriber_overflows_total = Counter(
    "subscriber_overflows_total",
    "Subscriptions closed because their queue overflowed",
    labelnames=["topic"]
)

active_subscriptions = Gauge(
    "active_subscriptions",
    "Currently open subscriptions",
    labelnames=["topic"]
)

# origin: send, auto
messages_created_total = Counter(
    "messages_created_total",
    "Total messages appended to the log",
    labelnames=["origin"]
)

status_transitions_total = Counter(
    "status_transitions_total",
    "Total message status transitions",
    labelnames=["status"]
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


def record_event_published(topic: str) -> None:
    events_published_total.labels(topic=topic).inc()


def record_subscriber_overflow(topic: str) -> None:
    subscriber_overflows_total.labels(topic=topic).inc()


def record_subscription_opened(topic: str) -> None:
    active_subscriptions.labels(topic=topic).inc()


def record_subscription_closed(topic: str) -> None:
    active_subscriptions.labels(topic=topic).dec()


def record_message_created(origin: str) -> None:
    """
    Record a message appended to the log.

    Args:
        origin: "send" for sendMessage, "auto" for injected messages
    """
    messages_created_total.labels(origin=origin).inc()


def record_status_transition(status: str) -> None:
    status_transitions_total.labels(status=status).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string for Prometheus exposition format
    """
    return CONTENT_TYPE_LATEST
