"""
Usage reporting.

Read-only aggregation over the request log and ledger for dashboards.
"""

from usage_monitor.reporting.aggregator import UsageAggregator

__all__ = ["UsageAggregator"]
