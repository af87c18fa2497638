"""
Request logging middleware.

StructuredLoggingMiddleware binds request_id/trace_id for the lifetime of a
request and writes one access line per request, tagged with the metering
outcome read back from the usage headers. SlowRequestLogger escalates
requests whose wall time crosses the configured thresholds.
"""

import time
import uuid
from collections.abc import Callable, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from usage_monitor.observability.logging import RequestContext, get_logger

logger = get_logger(__name__)

# Probes and scrapes would drown the access log
QUIET_PATHS = ("/health", "/metrics")


def metering_outcome(response: Response) -> str:
    """Classify a response as charged, payment_required or unmetered."""
    if "X-Usage-Ledger-Entry" in response.headers:
        return "charged"
    if response.status_code == 402:
        return "payment_required"
    return "unmetered"


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Bind request context and log every completed request.

    Honors incoming X-Request-ID / X-Trace-ID headers, generates them
    otherwise, and echoes both on the response.
    """

    def __init__(self, app: ASGIApp, quiet_paths: Iterable[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"
        trace_id = request.headers.get("x-trace-id") or f"trace_{uuid.uuid4().hex[:16]}"
        path = request.url.path

        with RequestContext(request_id=request_id, trace_id=trace_id):
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    "Request raised",
                    method=request.method,
                    path=path,
                    latency_ms=round((time.perf_counter() - started) * 1000, 2),
                    exception_type=type(exc).__name__,
                    exc_info=True,
                )
                raise

            if not path.startswith(self.quiet_paths):
                logger.info(
                    "Request completed",
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    metering=metering_outcome(response),
                    remaining_requests=response.headers.get("X-Usage-Remaining"),
                    latency_ms=round((time.perf_counter() - started) * 1000, 2),
                )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Trace-ID"] = trace_id
            return response


class SlowRequestLogger(BaseHTTPMiddleware):
    """Warn above warning_threshold_ms, error above error_threshold_ms."""

    def __init__(
        self,
        app: ASGIApp,
        warning_threshold_ms: float = 250.0,
        error_threshold_ms: float = 1000.0,
    ):
        super().__init__(app)
        self.warning_threshold_ms = warning_threshold_ms
        self.error_threshold_ms = error_threshold_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - started) * 1000

        if latency_ms <= self.warning_threshold_ms:
            return response

        over_error = latency_ms > self.error_threshold_ms
        log = logger.error if over_error else logger.warning
        log(
            "Slow request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            metering=metering_outcome(response),
            latency_ms=round(latency_ms, 2),
            threshold_ms=self.error_threshold_ms if over_error else self.warning_threshold_ms,
        )
        return response
