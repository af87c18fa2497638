"""
HTTP metrics middleware.

Sits outside the usage monitoring middleware, so 402/503 rejections and
the monitor's own API are counted alongside host-app traffic.
"""

import logging
import re
import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from usage_monitor.observability.metrics import http_requests_active, track_request

logger = logging.getLogger(__name__)

# Numeric path segments (ledger entry ids, host-app ids) would explode label cardinality
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def normalize_endpoint(path: str) -> str:
    """
    Collapse numeric path segments to {id}.

    /api/usage-monitor/payments/12 -> /api/usage-monitor/payments/{id}
    /api/orders/7/items -> /api/orders/{id}/items
    """
    return _NUMERIC_SEGMENT.sub("/{id}", path)


def endpoint_label(request: Request) -> str:
    """Route template once routing has matched, otherwise the normalized path."""
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template if isinstance(template, str) else normalize_endpoint(request.url.path)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Latency histogram, request counter and in-flight gauge per endpoint."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        pending_label = normalize_endpoint(request.url.path)
        http_requests_active.labels(method=request.method, endpoint=pending_label).inc()
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception:
            logger.error("Unhandled error while serving %s", request.url.path, exc_info=True)
            raise
        finally:
            http_requests_active.labels(method=request.method, endpoint=pending_label).dec()
            track_request(
                method=request.method,
                endpoint=endpoint_label(request),
                status_code=status_code,
                duration_seconds=time.perf_counter() - started,
            )
