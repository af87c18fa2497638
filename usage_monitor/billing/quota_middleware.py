"""
Usage monitoring middleware.

Routes monitored requests through the RequestAccountant: rejects before the
handler runs when the account is missing or out of capacity, and charges +
logs every admitted request after the handler finishes.
"""

import logging
from collections.abc import Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from usage_monitor.billing.accountant import RequestAccountant
from usage_monitor.exceptions import NoCapacityError, NotProvisionedError, PersistenceError
from usage_monitor.observability.metrics import set_remaining_capacity
from usage_monitor.storage.database import get_ledger_db

logger = logging.getLogger(__name__)


def path_has_prefix(path: str, prefix: str) -> bool:
    """
    Prefix match on path-segment boundaries.

    "/api/usage-monitor" matches "/api/usage-monitor" and "/api/usage-monitor/logs"
    but not "/api/usage-monitoring". A prefix ending in "/" matches anything below it.
    """
    if prefix.endswith("/"):
        return path.startswith(prefix) or path == prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class UsageMonitoringMiddleware(BaseHTTPMiddleware):
    """
    Middleware to meter requests against the account's ledger.

    Only paths under a monitored prefix are charged; exempt prefixes
    (the monitor's own API, health checks, metrics, docs) always pass.

    Responses:
        503 not_provisioned: no account has been set up
        402 payment_required: no ledger entry has capacity
        503 usage_recording_failed: the charge could not be stored
        504 gateway_timeout: the handler exceeded the operation timeout
    """

    def __init__(
        self,
        app,
        monitored_paths: Iterable[str] = ("/api/",),
        exempt_paths: Iterable[str] = (),
        timeout_seconds: float | None = None,
        business_exceptions: tuple[type[BaseException], ...] = (),
        log_rejected_requests: bool | None = None,
    ):
        """
        Initialize usage monitoring middleware.

        Args:
            app: FastAPI application
            monitored_paths: Path prefixes that consume capacity
            exempt_paths: Path prefixes that are never metered
            timeout_seconds: Timeout applied to the handler (None = no timeout)
            business_exceptions: Handler exceptions recorded as business outcomes
            log_rejected_requests: Override the rejected-request logging policy
        """
        super().__init__(app)
        self.monitored_paths = tuple(monitored_paths)
        self.exempt_paths = tuple(exempt_paths)
        self.timeout_seconds = timeout_seconds
        self.business_exceptions = business_exceptions
        self.log_rejected_requests = log_rejected_requests

    def is_monitored(self, path: str) -> bool:
        if any(path_has_prefix(path, prefix) for prefix in self.exempt_paths):
            return False
        return any(path_has_prefix(path, prefix) for prefix in self.monitored_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Guard, execute and record a monitored request.

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response: Handler response with usage headers, or a rejection
        """
        path = request.url.path

        if not self.is_monitored(path):
            return await call_next(request)

        db = await get_ledger_db()
        accountant = RequestAccountant(
            db,
            business_exceptions=self.business_exceptions,
            timeout_seconds=self.timeout_seconds,
            log_rejected_requests=self.log_rejected_requests,
        )

        try:
            accounted = await accountant.run(
                lambda: call_next(request),
                path=path,
                method=request.method,
            )
        except NotProvisionedError:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "not_provisioned",
                    "message": "Usage monitoring is not set up. Create the account first.",
                },
            )
        except NoCapacityError as e:
            return JSONResponse(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                content={
                    "error": "payment_required",
                    "message": "API request limit exceeded. Add a payment to continue.",
                    "account_id": e.account_id,
                },
                headers={"X-Usage-Remaining": "0"},
            )
        except PersistenceError as e:
            logger.error(
                "Usage could not be recorded, rejecting request",
                extra={"path": path, "error": str(e)},
            )
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "usage_recording_failed",
                    "message": "The request could not be metered. Try again later.",
                },
            )
        except TimeoutError:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "error": "gateway_timeout",
                    "message": f"Request exceeded {self.timeout_seconds}s",
                },
            )

        response: Response = accounted.result
        if accounted.charge is not None:
            summary = await accountant.quota.capacity_summary_for(accounted.account_id)
            set_remaining_capacity(summary.remaining_requests)
            response.headers["X-Usage-Ledger-Entry"] = str(accounted.charge.ledger_entry_id)
            response.headers["X-Usage-Remaining"] = str(summary.remaining_requests)
            response.headers["X-Usage-Total"] = str(summary.total_requests)

        return response
