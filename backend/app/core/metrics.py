"""Prometheus metric helpers."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "chat_requests_total",
    "HTTP requests processed by the API",
    ("method", "path", "status"),
)

REQUEST_LATENCY = Histogram(
    "chat_request_latency_seconds",
    "Latency of HTTP requests processed by the API",
    ("method", "path"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

COMPLETION_RESULTS = Counter(
    "chat_completion_results_total",
    "Completion service call outcomes",
    ("status",),
)

COMPLETION_LATENCY = Histogram(
    "chat_completion_latency_seconds",
    "Latency of completion service calls",
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record counters and histograms for a processed HTTP request."""

    REQUEST_COUNT.labels(method, path, str(status_code)).inc()
    REQUEST_LATENCY.labels(method, path).observe(duration)


def record_completion(status: str, duration: float) -> None:
    """Count a completion call outcome and observe its latency."""

    COMPLETION_RESULTS.labels(status).inc()
    COMPLETION_LATENCY.observe(duration)
