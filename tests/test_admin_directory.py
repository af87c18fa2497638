"""
Tests for the admin directory.

Tests:
- bcrypt hashing and verification
- Single admin setup and validation
- Credential cache for successful logins
"""

import pytest
from prometheus_client import REGISTRY

from usage_monitor.auth.admin import AdminDirectory, hash_password, verify_password


def cache_hits() -> float:
    return REGISTRY.get_sample_value("usage_monitor_admin_credential_cache_hits_total") or 0.0


def test_hash_and_verify_password():
    password_hash = hash_password("correct-horse-battery", rounds=4)

    assert password_hash != "correct-horse-battery"
    assert verify_password("correct-horse-battery", password_hash)
    assert not verify_password("wrong-password", password_hash)


def test_verify_password_with_malformed_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_hash_password_rejects_overlong_input():
    with pytest.raises(ValueError):
        hash_password("x" * 73, rounds=4)


@pytest.mark.asyncio
async def test_create_admin_only_once(ledger_db):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4)

    assert await directory.has_admin_account() is False
    assert await directory.create_admin_account("admin", "correct-horse-battery") is True
    assert await directory.create_admin_account("other", "another-password") is False
    assert await directory.has_admin_account() is True


@pytest.mark.asyncio
@pytest.mark.parametrize("username, password", [("x", "short"), ("   ", ""), ("other", "another-password")])
async def test_second_setup_refused_whatever_the_credentials(ledger_db, username, password):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4)
    await directory.create_admin_account("admin", "correct-horse-battery")

    assert await directory.create_admin_account(username, password) is False
    assert await directory.verify_admin_credentials("admin", "correct-horse-battery") is True


@pytest.mark.asyncio
@pytest.mark.parametrize("username, password", [("   ", "long-enough-password"), ("admin", "short")])
async def test_create_admin_validates_input(ledger_db, username, password):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4)

    with pytest.raises(ValueError):
        await directory.create_admin_account(username, password)

    assert await directory.has_admin_account() is False


@pytest.mark.asyncio
async def test_verify_admin_credentials(ledger_db):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4)
    await directory.create_admin_account("admin", "correct-horse-battery")

    assert await directory.verify_admin_credentials("admin", "correct-horse-battery") is True
    assert await directory.verify_admin_credentials("admin", "wrong-password") is False
    assert await directory.verify_admin_credentials("nobody", "correct-horse-battery") is False


@pytest.mark.asyncio
async def test_successful_login_is_cached(ledger_db):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4, cache_ttl_seconds=60)
    await directory.create_admin_account("admin", "correct-horse-battery")

    await directory.verify_admin_credentials("admin", "correct-horse-battery")
    before = cache_hits()
    await directory.verify_admin_credentials("admin", "correct-horse-battery")

    assert cache_hits() == before + 1

    directory.clear_cache()
    await directory.verify_admin_credentials("admin", "correct-horse-battery")
    assert cache_hits() == before + 1


@pytest.mark.asyncio
async def test_failed_login_is_not_cached(ledger_db):
    directory = AdminDirectory(ledger_db, bcrypt_rounds=4, cache_ttl_seconds=60)
    await directory.create_admin_account("admin", "correct-horse-battery")

    before = cache_hits()
    await directory.verify_admin_credentials("admin", "wrong-password")
    await directory.verify_admin_credentials("admin", "wrong-password")

    assert cache_hits() == before
