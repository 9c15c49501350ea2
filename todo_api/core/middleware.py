import secrets
import time

from fastapi import Request
from prometheus_client import (
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.routing import Match

REQUEST_ID_HEADER = "x-request-id"
UNMATCHED_PATH = "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or secrets.token_hex(16)
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestMetrics:
    """Prometheus collectors for one app, kept in their own registry."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)
        self.requests = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "path", "status"],
            registry=self.registry,
            buckets=(0.05, 0.1, 0.2, 0.5, 1, 2, 5),
        )

    def observe(self, method: str, path: str, status: int, seconds: float) -> None:
        labels = {"method": method, "path": path, "status": str(status)}
        self.requests.labels(**labels).inc()
        self.duration.labels(**labels).observe(seconds)


def route_template(request: Request) -> str:
    # Label by route template so path parameters do not create new series.
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_PATH)
    return UNMATCHED_PATH


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, metrics: RequestMetrics) -> None:
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next) -> Response:
        path = route_template(request)
        start = time.perf_counter()
        response: Response = await call_next(request)
        self.metrics.observe(
            request.method, path, response.status_code, time.perf_counter() - start
        )
        return response
