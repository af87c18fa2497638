"""
Usage monitor API endpoints.

Mounted under /api/usage-monitor:
- logs: paginated request log, error log
- account: the metered account (create/update are admin only)
- payments: ledger entries with derived capacity (create is admin only)
- analytics: overview, timeline, top endpoints, response times, monthly usage, errors
- admin: one-time setup and credential check

These paths are exempt from metering.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from usage_monitor.auth.admin import AdminDirectory
from usage_monitor.auth.dependencies import get_admin_directory, require_admin
from usage_monitor.models.account import Account, AccountCreate, AccountUpdate, AdminCredentials
from usage_monitor.models.ledger import LedgerEntry, LedgerEntryCreate
from usage_monitor.models.usage import (
    EndpointStats,
    LogEntry,
    LogPage,
    ResponseTimePoint,
    TimelinePoint,
    UsageOverview,
)
from usage_monitor.rate_limits import admin_auth_rate_limit, limiter
from usage_monitor.reporting.aggregator import UsageAggregator
from usage_monitor.storage.database import LedgerDatabase, get_ledger_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage-monitor", tags=["Usage Monitor"])


# Request/response models
class AccountSetupRequest(AccountCreate):
    """Account provisioning, optionally with the first payment."""

    initial_payment: LedgerEntryCreate | None = None


class RequestCountResponse(BaseModel):
    account_id: int
    count: int


class AdminExistsResponse(BaseModel):
    exists: bool


class AdminLoginResponse(BaseModel):
    authenticated: bool
    username: str


async def get_usage_aggregator() -> UsageAggregator:
    return UsageAggregator(await get_ledger_db())


async def _require_account(db: LedgerDatabase) -> Account:
    account = await db.get_account()
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account has been provisioned",
        )
    return account


# Logs


@router.get("/logs", response_model=LogPage)
async def get_logs(
    from_time: datetime | None = Query(default=None, alias="from"),
    to_time: datetime | None = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=1000, alias="pageSize"),
    db: LedgerDatabase = Depends(get_ledger_db),
) -> LogPage:
    """
    Request log, most recent first.

    Args:
        from_time: Inclusive lower bound (query param "from")
        to_time: Inclusive upper bound (query param "to")
        page: 1-based page number
        page_size: Rows per page (query param "pageSize")
    """
    logs, total_count = await db.get_logs(
        from_time=from_time, to_time=to_time, page=page, page_size=page_size
    )
    return LogPage(logs=logs, total_count=total_count, current_page=page, page_size=page_size)


@router.get("/logs/errors", response_model=list[LogEntry])
async def get_error_logs(
    from_time: datetime | None = Query(default=None, alias="from"),
    to_time: datetime | None = Query(default=None, alias="to"),
    db: LedgerDatabase = Depends(get_ledger_db),
) -> list[LogEntry]:
    """Requests that ended with status >= 400, most recent first."""
    return await db.get_error_logs(from_time=from_time, to_time=to_time)


# Account


@router.get("/account", response_model=Account)
async def get_account(db: LedgerDatabase = Depends(get_ledger_db)) -> Account:
    """
    Get the metered account.

    Raises:
        404: No account provisioned
    """
    return await _require_account(db)


@router.post(
    "/account",
    response_model=Account,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_account(
    setup: AccountSetupRequest,
    db: LedgerDatabase = Depends(get_ledger_db),
) -> Account:
    """
    Provision the account (admin only).

    Raises:
        400: Initial payment has a unit price <= 0
        409: An account already exists
    """
    account = await db.create_account(
        AccountCreate(name=setup.name, email=setup.email),
        initial_payment=setup.initial_payment,
    )

    if account is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account is already provisioned",
        )

    return account


@router.put("/account", response_model=Account, dependencies=[Depends(require_admin)])
async def update_account(
    update: AccountUpdate,
    db: LedgerDatabase = Depends(get_ledger_db),
) -> Account:
    """
    Update account name/email (admin only).

    Raises:
        404: No account provisioned
    """
    account = await _require_account(db)
    updated = await db.update_account(account.account_id, update)

    if updated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account has been provisioned",
        )

    return updated


@router.get("/account/usage", response_model=RequestCountResponse)
async def get_account_usage(db: LedgerDatabase = Depends(get_ledger_db)) -> RequestCountResponse:
    """Total requests ever logged for the account."""
    account = await _require_account(db)
    count = await db.get_total_request_count(account.account_id)
    return RequestCountResponse(account_id=account.account_id, count=count)


# Payments (ledger entries)


@router.get("/payments", response_model=list[LedgerEntry])
async def list_payments(
    db: LedgerDatabase = Depends(get_ledger_db),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> list[LedgerEntry]:
    """Ledger entries of the account with total/used/remaining, oldest first."""
    account = await _require_account(db)
    return await aggregator.get_ledger_snapshots(account.account_id)


@router.get("/payments/{entry_id}", response_model=LedgerEntry)
async def get_payment(
    entry_id: int,
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> LedgerEntry:
    """
    Get one ledger entry.

    Raises:
        404: Ledger entry not found
    """
    entry = await aggregator.get_ledger_entry_stats(entry_id)

    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Ledger entry {entry_id} not found",
        )

    return entry


@router.post(
    "/payments",
    response_model=LedgerEntry,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def add_payment(
    payment: LedgerEntryCreate,
    db: LedgerDatabase = Depends(get_ledger_db),
) -> LedgerEntry:
    """
    Add capacity to the account (admin only).

    Raises:
        400: Unit price <= 0
        404: No account provisioned
    """
    account = await _require_account(db)
    return await db.add_ledger_entry(account.account_id, payment)


# Analytics


@router.get("/analytics/overview", response_model=UsageOverview)
async def get_overview(
    window_days: int = Query(default=30, ge=1, le=366),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> UsageOverview:
    return await aggregator.get_overview(window_days)


@router.get("/analytics/timeline", response_model=list[TimelinePoint])
async def get_timeline(
    window_days: int = Query(default=7, ge=1, le=366),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> list[TimelinePoint]:
    """Daily request counts, oldest first, zero-filled."""
    return await aggregator.get_timeline(window_days)


@router.get("/analytics/endpoints", response_model=list[EndpointStats])
async def get_top_endpoints(
    limit: int = Query(default=10, ge=1, le=100),
    window_days: int | None = Query(default=None, ge=1, le=366),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> list[EndpointStats]:
    return await aggregator.get_top_endpoints(limit=limit, window_days=window_days)


@router.get("/analytics/response-times", response_model=list[ResponseTimePoint])
async def get_response_times(
    window_days: int = Query(default=7, ge=1, le=366),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> list[ResponseTimePoint]:
    return await aggregator.get_response_time_series(window_days)


@router.get("/analytics/usage", response_model=dict[int, int])
async def get_monthly_usage(
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> dict[int, int]:
    """Requests per day of the current month (day -> count)."""
    return await aggregator.get_monthly_usage_stats()


@router.get("/analytics/errors", response_model=dict[int, int])
async def get_error_breakdown(
    window_days: int = Query(default=30, ge=1, le=366),
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
) -> dict[int, int]:
    """Error responses by status code (status -> count)."""
    return await aggregator.get_error_breakdown(window_days)


# Admin


@router.get("/admin/exists", response_model=AdminExistsResponse)
async def admin_exists(
    directory: AdminDirectory = Depends(get_admin_directory),
) -> AdminExistsResponse:
    return AdminExistsResponse(exists=await directory.has_admin_account())


@router.post("/admin/setup", response_model=AdminExistsResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(admin_auth_rate_limit)
async def setup_admin(
    request: Request,  # Required by slowapi
    credentials: AdminCredentials,
    directory: AdminDirectory = Depends(get_admin_directory),
) -> AdminExistsResponse:
    """
    Create the admin account. Only the first call succeeds.

    Raises:
        400: An admin already exists
        422: Username empty or password too short
    """
    try:
        created = await directory.create_admin_account(credentials.username, credentials.password)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    if not created:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admin account already exists",
        )

    return AdminExistsResponse(exists=True)


@router.post("/admin/login", response_model=AdminLoginResponse)
@limiter.limit(admin_auth_rate_limit)
async def login_admin(
    request: Request,  # Required by slowapi
    credentials: AdminCredentials,
    directory: AdminDirectory = Depends(get_admin_directory),
) -> AdminLoginResponse:
    """
    Check admin credentials.

    Raises:
        401: Invalid username or password
    """
    valid = await directory.verify_admin_credentials(credentials.username, credentials.password)

    if not valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
        )

    return AdminLoginResponse(authenticated=True, username=credentials.username)
