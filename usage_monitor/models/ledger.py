"""
Ledger entry ("payment") models.

A ledger entry is one prepaid block of request capacity. Only amount,
unit price and the used counter are stored; capacity figures are derived
on every read so they can never drift from the base fields.

Money is persisted as integer cents. floor(amount / unit_price) is then an
exact integer division in both SQL and Python.
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field, computed_field

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> int:
    """Convert a money amount to integer cents (half-up rounding)."""
    return int((Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


class LedgerEntry(BaseModel):
    """One purchase of request capacity, with derived usage figures."""

    entry_id: int
    account_id: int
    amount: Decimal = Field(..., description="Amount paid")
    unit_price: Decimal = Field(..., description="Amount charged per request")
    used_requests: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field
    @property
    def total_requests(self) -> int:
        """floor(amount / unit_price)."""
        unit = to_cents(self.unit_price)
        if unit <= 0:
            return 0
        return to_cents(self.amount) // unit

    @computed_field
    @property
    def remaining_requests(self) -> int:
        return self.total_requests - self.used_requests

    @computed_field
    @property
    def is_fully_utilized(self) -> bool:
        return self.used_requests >= self.total_requests


class LedgerEntryCreate(BaseModel):
    """
    Schema for adding capacity.

    unit_price is unconstrained here; the ledger store rejects non-positive
    prices with InvalidUnitPriceError (HTTP 400).
    """

    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    unit_price: Decimal = Field(..., max_digits=18, decimal_places=2)
