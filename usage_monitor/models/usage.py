"""
Request log and usage report models.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field


class LogEntry(BaseModel):
    """Immutable record of one monitored request."""

    log_id: int
    account_id: int
    ledger_entry_id: int | None = Field(
        default=None, description="Ledger entry charged for this request (None if not charged)"
    )
    path: str
    method: str
    status_code: int
    duration_seconds: float = Field(..., ge=0.0)
    request_time: datetime

    @property
    def is_success(self) -> bool:
        """2xx only; the overview, timeline and endpoint stats all count this way."""
        return 200 <= self.status_code < 300


class ChargeResult(BaseModel):
    """Outcome of one charge-and-log unit of work."""

    ledger_entry_id: int | None
    log_id: int
    remaining_requests: int = Field(default=0, ge=0)


class LogPage(BaseModel):
    """A page of log entries, most-recent-first."""

    logs: list[LogEntry]
    total_count: int
    current_page: int
    page_size: int


class CapacitySummary(BaseModel):
    """Capacity totals across all ledger entries of an account."""

    total_requests: int = 0
    used_requests: int = 0
    remaining_requests: int = 0
    ledger_entries: int = 0
    exhausted_entries: int = 0


class UsageOverview(BaseModel):
    """Headline numbers for a reporting window."""

    window_days: int
    total_requests: int
    success_count: int
    client_error_count: int
    server_error_count: int
    success_rate: float = Field(..., description="Percentage of 2xx responses")
    error_rate: float = Field(..., description="Percentage of responses with status >= 400")
    client_error_rate: float
    server_error_rate: float
    average_duration_seconds: float
    capacity: CapacitySummary


class TimelinePoint(BaseModel):
    """Request counts for one calendar day (UTC)."""

    day: date
    total_requests: int
    successful_requests: int
    failed_requests: int


class EndpointStats(BaseModel):
    """Traffic for a single path."""

    path: str
    request_count: int
    success_rate: float
    average_duration_seconds: float


class ResponseTimePoint(BaseModel):
    """Response time distribution for one calendar day (UTC)."""

    day: date
    request_count: int
    average_seconds: float | None = None
    p50_seconds: float | None = None
    p95_seconds: float | None = None
    p99_seconds: float | None = None
