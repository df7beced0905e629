"""Prometheus metrics for signing, verification and API calls."""

import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# === Counters ===

REQUESTS_SIGNED_TOTAL = Counter(
    "saccolink_requests_signed_total",
    "Total outbound requests signed",
    ["method"],
)

VERIFICATIONS_TOTAL = Counter(
    "saccolink_verifications_total",
    "Signature verification outcomes",
    ["outcome"],  # accepted or a RejectReason value
)

API_CALLS_TOTAL = Counter(
    "saccolink_api_calls_total",
    "Outbound Bitnob API calls",
    ["method", "status"],  # status: HTTP status or "network_error"
)

HTTP_REQUESTS_TOTAL = Counter(
    "saccolink_http_requests_total",
    "Total inbound HTTP requests",
    ["method", "endpoint", "status"],
)

# === Histograms ===

API_CALL_LATENCY = Histogram(
    "saccolink_api_call_latency_seconds",
    "Outbound Bitnob API call latency in seconds",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_LATENCY = Histogram(
    "saccolink_http_request_latency_seconds",
    "Inbound HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


# === Helper Functions ===


def record_signed_request(method: str) -> None:
    """Record a signed outbound request."""
    REQUESTS_SIGNED_TOTAL.labels(method=method).inc()


def record_verification(outcome: str) -> None:
    """Record a verification outcome."""
    VERIFICATIONS_TOTAL.labels(outcome=outcome).inc()


def record_api_call(method: str, status: str, latency: float) -> None:
    """Record an outbound API call."""
    API_CALLS_TOTAL.labels(method=method, status=status).inc()
    API_CALL_LATENCY.labels(method=method).observe(latency)


def record_http_request(method: str, endpoint: str, status: int, latency: float) -> None:
    """Record an inbound sandbox request."""
    HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    HTTP_REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(latency)


# === HTTP Endpoint ===


class MetricsMiddleware:
    """Counts inbound requests by final status, including auth rejections."""

    def __init__(self, app: ASGIApp, exclude_paths: list[str] | None = None) -> None:
        self.app = app
        self._exclude_paths = frozenset(exclude_paths or ())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self._exclude_paths:
            await self.app(scope, receive, send)
            return

        status = 500
        start = time.perf_counter()

        async def send_and_capture(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_and_capture)
        finally:
            record_http_request(
                scope["method"],
                scope["path"],
                status,
                time.perf_counter() - start,
            )


async def metrics_endpoint(_request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
