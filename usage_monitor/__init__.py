"""
Usage Monitor - prepaid request metering for FastAPI services.

Charges each monitored request against the oldest prepaid ledger entry
("payment") with remaining capacity, logs every request, and exposes usage
analytics for dashboards and billing.

Key Features:
    - Atomic charge-and-log (no over-draw under concurrent traffic)
    - Oldest-first consumption of prepaid capacity
    - Request log with error and response time analytics
    - Single-admin setup with bcrypt credentials

Example:
    >>> from usage_monitor import get_settings
    >>> settings = get_settings()
    >>> print(settings.storage.db_path)
"""

from usage_monitor.config import get_settings

__all__ = ["get_settings"]
