"""
Quota evaluation over the ledger.

Answers "may this account make another request?" and "which ledger entry
pays for it?". Entries are consumed strictly oldest-first; the store keeps
selection and increment atomic, so the answers here are advisory reads.
"""

import logging

from usage_monitor.models.account import Account
from usage_monitor.models.ledger import LedgerEntry
from usage_monitor.models.usage import CapacitySummary
from usage_monitor.storage.database import LedgerDatabase

logger = logging.getLogger(__name__)


class QuotaEvaluator:
    """
    Capacity checks for an account.

    Usage:
        evaluator = QuotaEvaluator(db)
        if await evaluator.has_capacity(account):
            ...
    """

    def __init__(self, db: LedgerDatabase):
        self.db = db

    async def has_capacity(self, account: Account) -> bool:
        """
        Check whether any ledger entry of the account has remaining capacity.

        Args:
            account: Account to check

        Returns:
            bool: True if at least one entry has remaining_requests > 0
        """
        has_capacity = await self.db.has_capacity(account.account_id)

        if not has_capacity:
            logger.info(
                "Account has no remaining capacity",
                extra={"account_id": account.account_id},
            )

        return has_capacity

    async def select_chargeable(self, account: Account) -> LedgerEntry | None:
        """
        Pick the ledger entry the next request would be charged to.

        The oldest entry (by created_at, then entry_id) with remaining
        capacity wins.

        Args:
            account: Account to select for

        Returns:
            LedgerEntry or None if every entry is exhausted
        """
        return await self.db.select_chargeable(account.account_id)

    async def capacity_summary(self, account: Account) -> CapacitySummary:
        """
        Totals across all ledger entries of the account.

        Read-only; callers that export the remaining-capacity gauge do so
        themselves.

        Args:
            account: Account to summarize

        Returns:
            CapacitySummary: Total, used and remaining requests
        """
        return await self.capacity_summary_for(account.account_id)

    async def capacity_summary_for(self, account_id: int) -> CapacitySummary:
        entries = await self.db.list_ledger_entries(account_id)

        return CapacitySummary(
            total_requests=sum(e.total_requests for e in entries),
            used_requests=sum(e.used_requests for e in entries),
            remaining_requests=sum(e.remaining_requests for e in entries),
            ledger_entries=len(entries),
            exhausted_entries=sum(1 for e in entries if e.is_fully_utilized),
        )
