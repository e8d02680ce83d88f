"""Prometheus metric definitions for the payment service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


charge_requests_total = Counter("charge_requests_total", "Total charge requests", ["service"])
charge_outcomes_total = Counter(
    "charge_outcomes_total",
    "Charges settled by the gateway, by resulting status",
    ["service", "status"],
)
idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Charges answered from an existing payment with the same idempotency key",
    ["service"],
)
idempotency_conflicts_total = Counter(
    "idempotency_conflicts_total",
    "Concurrent creations rejected by the idempotency key unique constraint",
    ["service"],
)
refunds_total = Counter("refunds_total", "Total refunded payments", ["service"])
pending_recovered_total = Counter(
    "pending_recovered_total",
    "Incomplete PENDING payments resumed to a settled status",
    ["service"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Gateway authorize call latency seconds",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
