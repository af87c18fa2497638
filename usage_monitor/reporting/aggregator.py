"""
Read-side usage rollups for dashboards and billing displays.

All methods are side-effect free. Windows are counted in whole UTC days
ending today: a 7-day window covers today and the six days before it.
"""

import logging
import statistics
from collections import Counter, defaultdict
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta

from usage_monitor.billing.quota import QuotaEvaluator
from usage_monitor.models.ledger import LedgerEntry
from usage_monitor.models.usage import (
    CapacitySummary,
    EndpointStats,
    LogEntry,
    ResponseTimePoint,
    TimelinePoint,
    UsageOverview,
)
from usage_monitor.storage.database import LedgerDatabase

logger = logging.getLogger(__name__)


def _rate(count: int, total: int) -> float:
    """Percentage rounded to two places (0.0 for an empty window)."""
    if total == 0:
        return 0.0
    return round(count / total * 100, 2)


def _percentiles(durations: list[float]) -> tuple[float, float, float]:
    """p50, p95, p99 of a non-empty sample."""
    if len(durations) == 1:
        return durations[0], durations[0], durations[0]
    cuts = statistics.quantiles(durations, n=100, method="inclusive")
    return cuts[49], cuts[94], cuts[98]


class UsageAggregator:
    """
    Usage statistics over the request log.

    Args:
        db: Ledger store
        now: Clock returning an aware UTC datetime (injectable for tests)
    """

    def __init__(self, db: LedgerDatabase, now: Callable[[], datetime] | None = None):
        self.db = db
        self.quota = QuotaEvaluator(db)
        self._now = now or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------

    def _window_days(self, window_days: int) -> list[date]:
        if window_days < 1:
            raise ValueError(f"window_days must be >= 1, got {window_days}")
        today = self._now().astimezone(UTC).date()
        return [today - timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]

    def _window_start(self, window_days: int) -> datetime:
        first_day = self._window_days(window_days)[0]
        return datetime.combine(first_day, time.min, tzinfo=UTC)

    async def _logs_in_window(self, window_days: int | None) -> list[LogEntry]:
        from_time = self._window_start(window_days) if window_days is not None else None
        return await self.db.fetch_logs_between(from_time=from_time, to_time=self._now())

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    async def get_overview(self, window_days: int = 30) -> UsageOverview:
        """
        Headline numbers for the window.

        Args:
            window_days: Number of days (including today)

        Returns:
            UsageOverview: Counts and rates by status class, average duration
            and capacity totals across ledger entries
        """
        logs = await self._logs_in_window(window_days)
        total = len(logs)

        success = sum(1 for log in logs if log.is_success)
        client_errors = sum(1 for log in logs if 400 <= log.status_code < 500)
        server_errors = sum(1 for log in logs if log.status_code >= 500)
        errors = client_errors + server_errors

        average = statistics.fmean(log.duration_seconds for log in logs) if logs else 0.0

        account = await self.db.get_account()
        capacity = (
            await self.quota.capacity_summary(account) if account is not None else CapacitySummary()
        )

        return UsageOverview(
            window_days=window_days,
            total_requests=total,
            success_count=success,
            client_error_count=client_errors,
            server_error_count=server_errors,
            success_rate=_rate(success, total),
            error_rate=_rate(errors, total),
            client_error_rate=_rate(client_errors, total),
            server_error_rate=_rate(server_errors, total),
            average_duration_seconds=round(average, 6),
            capacity=capacity,
        )

    async def get_timeline(self, window_days: int = 7) -> list[TimelinePoint]:
        """
        Daily request counts, oldest first.

        Every day of the window is present; days without traffic are zero.
        """
        days = self._window_days(window_days)
        logs = await self._logs_in_window(window_days)

        totals: Counter[date] = Counter()
        successes: Counter[date] = Counter()
        for log in logs:
            day = log.request_time.astimezone(UTC).date()
            totals[day] += 1
            if log.is_success:
                successes[day] += 1

        return [
            TimelinePoint(
                day=day,
                total_requests=totals[day],
                successful_requests=successes[day],
                failed_requests=totals[day] - successes[day],
            )
            for day in days
        ]

    async def get_top_endpoints(
        self, limit: int = 10, window_days: int | None = None
    ) -> list[EndpointStats]:
        """
        Busiest paths by request count.

        Args:
            limit: Maximum number of paths
            window_days: Restrict to a window (None = all time)

        Returns:
            list[EndpointStats]: Sorted by count descending, then path
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        logs = await self._logs_in_window(window_days)

        by_path: dict[str, list[LogEntry]] = defaultdict(list)
        for log in logs:
            by_path[log.path].append(log)

        ranked = sorted(by_path.items(), key=lambda item: (-len(item[1]), item[0]))[:limit]

        return [
            EndpointStats(
                path=path,
                request_count=len(entries),
                success_rate=_rate(sum(1 for e in entries if e.is_success), len(entries)),
                average_duration_seconds=round(
                    statistics.fmean(e.duration_seconds for e in entries), 6
                ),
            )
            for path, entries in ranked
        ]

    async def get_response_time_series(self, window_days: int = 7) -> list[ResponseTimePoint]:
        """
        Daily response time distribution, oldest first.

        Days without traffic carry request_count 0 and None statistics.
        """
        days = self._window_days(window_days)
        logs = await self._logs_in_window(window_days)

        durations: dict[date, list[float]] = defaultdict(list)
        for log in logs:
            durations[log.request_time.astimezone(UTC).date()].append(log.duration_seconds)

        points = []
        for day in days:
            sample = durations.get(day)
            if not sample:
                points.append(ResponseTimePoint(day=day, request_count=0))
                continue

            p50, p95, p99 = _percentiles(sample)
            points.append(
                ResponseTimePoint(
                    day=day,
                    request_count=len(sample),
                    average_seconds=statistics.fmean(sample),
                    p50_seconds=p50,
                    p95_seconds=p95,
                    p99_seconds=p99,
                )
            )
        return points

    async def get_ledger_snapshots(self, account_id: int) -> list[LedgerEntry]:
        """Per-entry amount, unit price, total/used/remaining, oldest first."""
        return await self.db.list_ledger_entries(account_id)

    async def get_ledger_entry_stats(self, entry_id: int) -> LedgerEntry | None:
        return await self.db.get_ledger_entry(entry_id)

    async def get_monthly_usage_stats(self) -> dict[int, int]:
        """
        Requests per day of the current (UTC) month.

        Returns:
            dict: day-of-month -> count, only days with traffic, ascending
        """
        now = self._now().astimezone(UTC)
        start_of_month = datetime(now.year, now.month, 1, tzinfo=UTC)
        logs = await self.db.fetch_logs_between(from_time=start_of_month, to_time=now)

        counts = Counter(log.request_time.astimezone(UTC).day for log in logs)
        return dict(sorted(counts.items()))

    async def get_error_breakdown(self, window_days: int = 30) -> dict[int, int]:
        """
        Error responses by status code within the window.

        Returns:
            dict: status code (>= 400) -> count, ascending by code
        """
        logs = await self._logs_in_window(window_days)
        counts = Counter(log.status_code for log in logs if log.status_code >= 400)
        return dict(sorted(counts.items()))
