"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- Temporary SQLite ledger databases
- A provisioned account with prepaid capacity
- FastAPI test client with a metered host route
"""

import asyncio
import os
from decimal import Decimal

# Cheap bcrypt and quiet console logs for the whole test session.
# Must be set before the first get_settings() call.
os.environ.setdefault("ADMIN_BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGGING_JSON_OUTPUT", "false")

import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from usage_monitor.models.account import AccountCreate
from usage_monitor.models.ledger import LedgerEntryCreate
from usage_monitor.rate_limits import limiter
from usage_monitor.storage.database import LedgerDatabase, set_ledger_db

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def reset_globals():
    """Isolate the global database and rate limiter between tests."""
    limiter.reset()
    yield
    set_ledger_db(None)


@pytest_asyncio.fixture
async def ledger_db(tmp_path) -> LedgerDatabase:
    """Empty, initialized ledger database in a temporary directory."""
    db = LedgerDatabase(db_path=str(tmp_path / "usage.db"), charge_retry_max_wait_ms=1.0)
    await db.initialize()
    return db


@pytest_asyncio.fixture
async def provisioned_db(ledger_db: LedgerDatabase) -> LedgerDatabase:
    """Database with one account and a 100.00 / 4.00 ledger entry (25 requests)."""
    await ledger_db.create_account(
        AccountCreate(name="Acme", email="ops@acme.example"),
        initial_payment=LedgerEntryCreate(amount=Decimal("100.00"), unit_price=Decimal("4.00")),
    )
    return ledger_db


class OrderRejected(Exception):
    """Business outcome raised by the sample host route."""

    status_code = 409


def build_host_app(db: LedgerDatabase) -> FastAPI:
    """Usage monitor app with a few host routes under the monitored /api/ prefix."""
    from usage_monitor.main import create_app

    set_ledger_db(db)
    app = create_app(business_exceptions=(OrderRejected,))

    @app.get("/api/echo")
    async def echo():
        return {"ok": True}

    @app.get("/api/missing")
    async def missing():
        raise HTTPException(status_code=404, detail="nope")

    @app.get("/api/boom")
    async def boom():
        raise RuntimeError("handler exploded")

    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: int):
        if order_id == 0:
            raise OrderRejected("order 0 is reserved")
        return {"order_id": order_id}

    @app.get("/public/ping")
    async def ping():
        return {"pong": True}

    return app


@pytest.fixture
def empty_db(tmp_path) -> LedgerDatabase:
    """Initialized database for synchronous (TestClient) tests."""
    db = LedgerDatabase(db_path=str(tmp_path / "usage.db"), charge_retry_max_wait_ms=1.0)
    asyncio.run(db.initialize())
    return db


@pytest.fixture
def client(empty_db: LedgerDatabase) -> TestClient:
    """Test client over an app whose database has no account yet."""
    return TestClient(build_host_app(empty_db))


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    """Test client after admin setup."""
    response = client.post(
        "/api/usage-monitor/admin/setup",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 201
    return client


@pytest.fixture
def lenient_client(empty_db: LedgerDatabase) -> TestClient:
    """Test client that returns 500 responses instead of re-raising handler errors."""
    return TestClient(build_host_app(empty_db), raise_server_exceptions=False)


@pytest.fixture
def admin_auth() -> tuple[str, str]:
    """Basic credentials of the admin created by admin_client."""
    return ADMIN_USERNAME, ADMIN_PASSWORD
