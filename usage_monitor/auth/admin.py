"""
Admin directory.

A deployment has at most one admin. Passwords are hashed with bcrypt and
verified in constant time; successful verifications are cached for a short
TTL so dashboards polling with Basic credentials do not pay ~300ms of
bcrypt per request.
"""

import hashlib
import logging

import bcrypt
from cachetools import TTLCache

from usage_monitor.observability.metrics import track_admin_cache_hit, track_admin_cache_miss
from usage_monitor.storage.database import LedgerDatabase

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash a password with bcrypt.

    Raises:
        ValueError: Password longer than 72 bytes once UTF-8 encoded
    """
    encoded = password.encode()
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt comparison; malformed input never verifies."""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def _cache_key(username: str, password: str) -> str:
    # Never keep plaintext credentials in memory longer than the request
    return hashlib.sha256(f"{username}\x00{password}".encode()).hexdigest()


class AdminDirectory:
    """
    Single-admin credential store.

    Args:
        db: Ledger store holding the admin row
        bcrypt_rounds: Cost factor for new hashes
        cache_ttl_seconds: Lifetime of a cached successful verification (0 disables)
        min_password_length: Minimum length accepted at setup
    """

    def __init__(
        self,
        db: LedgerDatabase,
        bcrypt_rounds: int = 12,
        cache_ttl_seconds: int = 300,
        min_password_length: int = 8,
    ):
        self.db = db
        self.bcrypt_rounds = bcrypt_rounds
        self.min_password_length = min_password_length
        self._cache: TTLCache | None = (
            TTLCache(maxsize=100, ttl=cache_ttl_seconds) if cache_ttl_seconds > 0 else None
        )

    async def has_admin_account(self) -> bool:
        return await self.db.has_admin()

    async def create_admin_account(self, username: str, password: str) -> bool:
        """
        Create the admin if none exists.

        Args:
            username: Admin username
            password: Plaintext password (hashed before storage)

        Returns:
            bool: True if created, False if an admin already exists (whatever
                the credentials)

        Raises:
            ValueError: No admin yet and username empty or password too short/long
        """
        # Fast path; insert_admin re-checks inside its transaction
        if await self.db.has_admin():
            logger.warning("Admin setup refused: an admin already exists")
            return False

        username = username.strip()
        if not username:
            raise ValueError("Username must not be empty")
        if len(password) < self.min_password_length:
            raise ValueError(f"Password must be at least {self.min_password_length} characters")

        password_hash = hash_password(password, rounds=self.bcrypt_rounds)
        created = await self.db.insert_admin(username, password_hash)

        if created:
            logger.info("Admin account created", extra={"username": username})
        else:
            logger.warning("Admin setup refused: an admin already exists")
        return created

    async def verify_admin_credentials(self, username: str, password: str) -> bool:
        """
        Check a username/password pair against the stored admin.

        Returns:
            bool: True if the credentials match
        """
        key = _cache_key(username, password)
        if self._cache is not None and key in self._cache:
            track_admin_cache_hit()
            return True

        track_admin_cache_miss()

        admin = await self.db.get_admin(username)
        if admin is None:
            logger.warning("Admin login failed: unknown username")
            return False

        if not verify_password(password, admin.password_hash):
            logger.warning("Admin login failed: wrong password", extra={"username": username})
            return False

        if self._cache is not None:
            self._cache[key] = True
        return True

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()
