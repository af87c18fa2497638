"""
Per-request guard and recorder.

Every monitored request goes through the same unit of work:

    UNCHECKED -> ADMISSION_FAILED            (no account provisioned)
              -> CAPACITY_REJECTED           (no ledger entry has capacity)
              -> EXECUTING -> RECORDED       (charged + logged exactly once)

Once the guarded operation has started, the charge-and-log step runs in a
finally block, so exceptions, timeouts and cancellation are all recorded.
Faults are never swallowed: the original exception is re-raised after
recording.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from usage_monitor.billing.quota import QuotaEvaluator
from usage_monitor.exceptions import NoCapacityError, NotProvisionedError, PersistenceError
from usage_monitor.models.usage import ChargeResult
from usage_monitor.observability.logging import set_account_id
from usage_monitor.observability.metrics import track_admission_failure
from usage_monitor.storage.database import LedgerDatabase

logger = logging.getLogger(__name__)

# Recorded for outcomes that never produced an HTTP status
STATUS_OK = 200
STATUS_PAYMENT_REQUIRED = 402
STATUS_CLIENT_CLOSED = 499
STATUS_INTERNAL_ERROR = 500
STATUS_TIMEOUT = 504


class RequestState(str, Enum):
    """Lifecycle of one monitored request."""

    UNCHECKED = "unchecked"
    ADMISSION_FAILED = "admission_failed"
    CAPACITY_REJECTED = "capacity_rejected"
    EXECUTING = "executing"
    RECORDED = "recorded"


@dataclass
class AccountedRequest:
    """Bookkeeping for one pass through RequestAccountant.run()."""

    path: str
    method: str
    state: RequestState = RequestState.UNCHECKED
    account_id: int | None = None
    status_code: int | None = None
    duration_seconds: float = 0.0
    charge: ChargeResult | None = None
    result: Any = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def status_from_result(result: Any) -> int:
    """
    Derive the recorded status code from an operation's return value.

    - object with an int status_code attribute (e.g. a Response): that code
    - plain int: that code
    - anything else: 200
    """
    status_code = getattr(result, "status_code", None)
    if isinstance(status_code, int) and not isinstance(status_code, bool):
        return status_code
    if isinstance(result, int) and not isinstance(result, bool):
        return result
    return STATUS_OK


def status_from_business_exception(exc: BaseException) -> int:
    """Business outcomes are benign: keep a 4xx code if they carry one, else 200."""
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int) and not isinstance(status_code, bool) and status_code < 500:
        return status_code
    return STATUS_OK


class RequestAccountant:
    """
    Admission, capacity check, execution and charge for a single request.

    Args:
        db: Ledger store
        quota: Quota evaluator (defaults to one over db)
        business_exceptions: Exception types the integrator treats as
            business outcomes rather than faults
        timeout_seconds: Default timeout for the guarded operation
        log_rejected_requests: Override the store's rejected-request logging policy
    """

    def __init__(
        self,
        db: LedgerDatabase,
        quota: QuotaEvaluator | None = None,
        business_exceptions: tuple[type[BaseException], ...] = (),
        timeout_seconds: float | None = None,
        log_rejected_requests: bool | None = None,
    ):
        self.db = db
        self.quota = quota or QuotaEvaluator(db)
        self.business_exceptions = tuple(business_exceptions)
        self.timeout_seconds = timeout_seconds
        self.log_rejected_requests = (
            db.log_rejected_requests if log_rejected_requests is None else log_rejected_requests
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        path: str,
        method: str,
        timeout_seconds: float | None = None,
    ) -> AccountedRequest:
        """
        Guard, execute and record one request.

        Args:
            operation: Zero-argument coroutine factory for the guarded work
            path: Request path to log
            method: HTTP method to log
            timeout_seconds: Timeout for this call (overrides the default)

        Returns:
            AccountedRequest: State RECORDED, with status, duration, charge and result

        Raises:
            NotProvisionedError: No account exists (operation not executed)
            NoCapacityError: No capacity before execution, or the charge was rejected after it
            PersistenceError: The charge could not be recorded
            Exception: Whatever the operation raised, after recording
        """
        request = AccountedRequest(path=path, method=method.upper())

        account = await self.db.get_account()
        if account is None:
            request.state = RequestState.ADMISSION_FAILED
            track_admission_failure("not_provisioned")
            logger.warning("Request rejected: no account provisioned", extra={"path": path})
            raise NotProvisionedError()

        request.account_id = account.account_id
        set_account_id(account.account_id)

        if not await self.quota.has_capacity(account):
            request.state = RequestState.CAPACITY_REJECTED
            request.status_code = STATUS_PAYMENT_REQUIRED
            track_admission_failure("no_capacity")
            logger.warning(
                "Request rejected: payment required",
                extra={"account_id": account.account_id, "path": path},
            )
            if self.log_rejected_requests:
                await self.db.record_unattributed_request(
                    account.account_id,
                    request.path,
                    request.method,
                    STATUS_PAYMENT_REQUIRED,
                    0.0,
                    request.started_at,
                )
            raise NoCapacityError(account.account_id)

        await self._execute(request, operation, timeout_seconds)
        return request

    async def _execute(
        self,
        request: AccountedRequest,
        operation: Callable[[], Awaitable[Any]],
        timeout_seconds: float | None,
    ) -> None:
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        request.state = RequestState.EXECUTING
        status_code = STATUS_INTERNAL_ERROR
        fault: BaseException | None = None
        start = time.perf_counter()

        try:
            if timeout is not None:
                result = await asyncio.wait_for(operation(), timeout=timeout)
            else:
                result = await operation()
            request.result = result
            status_code = status_from_result(result)
        except asyncio.TimeoutError as e:
            status_code = STATUS_TIMEOUT
            fault = e
            raise
        except asyncio.CancelledError as e:
            status_code = STATUS_CLIENT_CLOSED
            fault = e
            raise
        except self.business_exceptions as e:
            status_code = status_from_business_exception(e)
            fault = e
            raise
        except Exception as e:
            status_code = STATUS_INTERNAL_ERROR
            fault = e
            raise
        finally:
            request.duration_seconds = time.perf_counter() - start
            request.status_code = status_code
            await self._record(request, fault)

    async def _record(self, request: AccountedRequest, fault: BaseException | None) -> None:
        """Charge and log; a failure here rejects the request and chains the original fault."""
        try:
            request.charge = await self.db.record_request(
                request.account_id,
                request.path,
                request.method,
                request.status_code,
                request.duration_seconds,
                request_time=request.started_at,
                log_rejected=self.log_rejected_requests,
            )
        except (NoCapacityError, PersistenceError) as e:
            request.state = RequestState.CAPACITY_REJECTED
            logger.error(
                "Charge failed after execution, rejecting request",
                extra={
                    "account_id": request.account_id,
                    "path": request.path,
                    "status_code": request.status_code,
                    "error": str(e),
                },
            )
            if fault is not None:
                raise e from fault
            raise

        request.state = RequestState.RECORDED
        logger.debug(
            "Request recorded",
            extra={
                "account_id": request.account_id,
                "path": request.path,
                "status_code": request.status_code,
                "duration_seconds": round(request.duration_seconds, 6),
                "ledger_entry_id": request.charge.ledger_entry_id,
            },
        )
