"""
Rate limiting for the usage monitor API.

Uses slowapi with in-memory storage. Only the admin credential endpoints
(setup, login) are limited, per client address, to slow password guessing.
Metered API traffic is bounded by the ledger, not by rate limits.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from usage_monitor.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def admin_auth_rate_limit() -> str:
    """Rate limit string for admin setup/login (ADMIN_AUTH_RATE_LIMIT)."""
    return get_settings().admin.auth_rate_limit
