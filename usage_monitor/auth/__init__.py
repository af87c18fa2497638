"""
Admin authentication for the usage monitor API.

Security:
- Single admin, password hashed with bcrypt
- HTTP Basic credentials on admin-only endpoints
- Verified credentials cached in memory (short TTL)
"""

from usage_monitor.auth.admin import AdminDirectory, hash_password, verify_password
from usage_monitor.auth.dependencies import get_admin_directory, require_admin

__all__ = [
    "AdminDirectory",
    "get_admin_directory",
    "hash_password",
    "require_admin",
    "verify_password",
]
