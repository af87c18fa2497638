"""
Request metering against the prepaid ledger.

- quota: capacity checks and oldest-first entry selection
- accountant: per-request admission, execution and charge
- quota_middleware: HTTP middleware wiring the accountant into FastAPI
"""

from usage_monitor.billing.accountant import (
    AccountedRequest,
    RequestAccountant,
    RequestState,
)
from usage_monitor.billing.quota import QuotaEvaluator
from usage_monitor.billing.quota_middleware import UsageMonitoringMiddleware

__all__ = [
    "AccountedRequest",
    "QuotaEvaluator",
    "RequestAccountant",
    "RequestState",
    "UsageMonitoringMiddleware",
]
