"""
FastAPI dependencies for admin authentication.

Admin-only endpoints take HTTP Basic credentials, verified against the
single admin row by the AdminDirectory (bcrypt, cached for a short TTL).
"""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from usage_monitor.auth.admin import AdminDirectory
from usage_monitor.config import get_settings
from usage_monitor.storage.database import get_ledger_db

logger = logging.getLogger(__name__)

basic_auth = HTTPBasic(auto_error=False, description="Admin username and password")

_directory: AdminDirectory | None = None


async def get_admin_directory() -> AdminDirectory:
    """
    Get the admin directory bound to the current ledger database.

    Returns:
        AdminDirectory: Shared instance (rebuilt if the database was replaced)
    """
    global _directory
    db = await get_ledger_db()
    if _directory is None or _directory.db is not db:
        settings = get_settings()
        _directory = AdminDirectory(
            db,
            bcrypt_rounds=settings.admin.bcrypt_rounds,
            cache_ttl_seconds=settings.admin.credential_cache_ttl_seconds,
            min_password_length=settings.admin.min_password_length,
        )
    return _directory


async def require_admin(
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    directory: AdminDirectory = Depends(get_admin_directory),
) -> str:
    """
    Verify admin credentials.

    Args:
        credentials: HTTP Basic credentials (injected by FastAPI)
        directory: Admin directory (injected by FastAPI)

    Returns:
        str: Authenticated admin username

    Raises:
        HTTPException 401: Missing or invalid credentials

    Usage:
        @router.post("/payments", dependencies=[Depends(require_admin)])
        async def add_payment(...):
            ...
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin credentials required",
            headers={"WWW-Authenticate": "Basic"},
        )

    if not await directory.verify_admin_credentials(credentials.username, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
