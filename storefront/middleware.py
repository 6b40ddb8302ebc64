"""
Request observability for the storefront app.

setup_observability(app, ...) installs:
1. RequestMetricsMiddleware - latency histogram, request/error counters, in-flight gauge
2. CorrelationIdMiddleware - X-Correlation-ID in and out
3. /metrics, /health and /ready endpoints
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from .metrics import (
    HTTP_ERRORS_TOTAL,
    HTTP_IN_FLIGHT_REQUESTS,
    HTTP_REQUEST_LATENCY,
    HTTP_REQUEST_TOTAL,
    set_service_info,
)

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

ReadinessCheck = Callable[[], Awaitable[bool]]


def endpoint_label(request: Request) -> str:
    """
    Route template for metric labels, e.g. /api/v1/orders/{order_id}.

    Unmatched paths fall back to replacing numeric and UUID segments with {id}.
    """
    route = request.scope.get("route")
    if route is not None and getattr(route, "path", None):
        return route.path

    segments = []
    for segment in request.url.path.split("/"):
        if segment.isdigit() or (len(segment) == 36 and segment.count("-") == 4):
            segments.append("{id}")
        else:
            segments.append(segment)
    return "/".join(segments)


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or request.headers.get(
        CORRELATION_HEADER, str(uuid.uuid4())
    )


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Record Prometheus metrics and an access log line per request."""

    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.service_name = service_name

    def _count_error(self, endpoint: str, status_code: int):
        HTTP_ERRORS_TOTAL.labels(
            service=self.service_name,
            endpoint=endpoint,
            error_type="server_error" if status_code >= 500 else "client_error"
        ).inc()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        in_flight = HTTP_IN_FLIGHT_REQUESTS.labels(service=self.service_name)
        in_flight.inc()
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            logger.error(
                f"Unhandled error on {request.method} {request.url.path} "
                f"[{get_correlation_id(request)}]: {e}"
            )
            raise
        finally:
            elapsed = time.perf_counter() - started
            endpoint = endpoint_label(request)
            labels = dict(
                service=self.service_name,
                endpoint=endpoint,
                method=request.method,
                status_code=str(status_code)
            )
            HTTP_REQUEST_LATENCY.labels(**labels).observe(elapsed)
            HTTP_REQUEST_TOTAL.labels(**labels).inc()
            if status_code >= 400:
                self._count_error(endpoint, status_code)
            in_flight.dec()

            logger.info(
                f"{request.method} {endpoint} -> {status_code} "
                f"in {elapsed * 1000:.1f}ms [{get_correlation_id(request)}]"
            )


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's correlation (or request) ID, or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get(CORRELATION_HEADER)
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def setup_observability(
    app: FastAPI,
    service_name: str,
    version: str = "1.0.0",
    environment: str = "production",
    readiness_check: Optional[ReadinessCheck] = None
):
    """Install the middlewares and operational endpoints on the app."""
    set_service_info(service_name, version, environment)

    # Last added is outermost: the correlation ID is set before metrics run
    app.add_middleware(RequestMetricsMiddleware, service_name=service_name)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health():
        """Liveness probe."""
        return {"status": "healthy", "service": service_name, "version": version}

    @app.get("/ready")
    async def ready():
        """Readiness probe; 503 while the database is unreachable."""
        if readiness_check is not None and not await readiness_check():
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ready"}

    logger.info(f"Observability enabled for {service_name} ({environment})")
