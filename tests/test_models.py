"""
Tests for account and ledger models.

Tests:
- Derived capacity fields (total/remaining/fully-utilized)
- Money conversion to integer cents
- Account email validation
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from usage_monitor.models.account import AccountCreate, AccountUpdate
from usage_monitor.models.ledger import LedgerEntry, LedgerEntryCreate, from_cents, to_cents
from usage_monitor.models.usage import LogEntry


def make_entry(amount: str, unit_price: str, used: int = 0) -> LedgerEntry:
    return LedgerEntry(
        entry_id=1,
        account_id=1,
        amount=Decimal(amount),
        unit_price=Decimal(unit_price),
        used_requests=used,
        created_at=datetime.now(UTC),
    )


def test_derived_fields_partially_used():
    entry = make_entry("100.00", "4.00", used=12)

    assert entry.total_requests == 25
    assert entry.remaining_requests == 13
    assert entry.is_fully_utilized is False


def test_derived_fields_fully_used():
    entry = make_entry("100.00", "4.00", used=25)

    assert entry.remaining_requests == 0
    assert entry.is_fully_utilized is True


def test_total_requests_floors_fractional_capacity():
    # 10.00 / 3.00 = 3.33 -> 3 requests
    assert make_entry("10.00", "3.00").total_requests == 3
    # 0.10 / 0.03 = 3.33 -> 3 requests (no float drift)
    assert make_entry("0.10", "0.03").total_requests == 3


def test_total_requests_zero_for_non_positive_unit_price():
    assert make_entry("10.00", "0.00").total_requests == 0


def test_derived_fields_serialized():
    data = make_entry("100.00", "4.00", used=12).model_dump()

    assert data["total_requests"] == 25
    assert data["remaining_requests"] == 13
    assert data["is_fully_utilized"] is False


def test_cents_conversion():
    assert to_cents(Decimal("4.00")) == 400
    assert to_cents(Decimal("0.005")) == 1  # half-up
    assert to_cents(Decimal("19.99")) == 1999
    assert from_cents(1999) == Decimal("19.99")


def test_ledger_entry_create_requires_positive_amount():
    with pytest.raises(ValidationError):
        LedgerEntryCreate(amount=Decimal("0"), unit_price=Decimal("1.00"))


def test_ledger_entry_create_accepts_zero_unit_price():
    # Rejected by the store with InvalidUnitPriceError, not by the schema
    payment = LedgerEntryCreate(amount=Decimal("10.00"), unit_price=Decimal("0"))
    assert payment.unit_price == Decimal("0")


def test_account_create_normalizes_email():
    account = AccountCreate(name="Acme", email="Ops@Acme.Example")
    assert account.email == "ops@acme.example"


def test_account_create_rejects_invalid_email():
    with pytest.raises(ValidationError):
        AccountCreate(name="Acme", email="not-an-email")


def test_account_update_allows_partial():
    update = AccountUpdate(name="Renamed")
    assert update.email is None


def test_log_entry_success_flag():
    common = dict(
        log_id=1,
        account_id=1,
        path="/api/echo",
        method="GET",
        duration_seconds=0.01,
        request_time=datetime.now(UTC),
    )
    assert LogEntry(status_code=204, **common).is_success
    assert not LogEntry(status_code=404, **common).is_success
    assert not LogEntry(status_code=304, **common).is_success
