"""
Account and admin data models.

A deployment meters exactly one account. Ledger entries and log entries
reference it by account_id.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator


def _validate_email(v: str) -> str:
    if "@" not in v or "." not in v.split("@")[-1]:
        raise ValueError("Invalid email format")
    return v.lower()


class Account(BaseModel):
    """The metered client whose requests are charged against ledger entries."""

    account_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255, description="Primary contact email")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AccountCreate(BaseModel):
    """Schema for provisioning the account."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        """Basic email validation."""
        return _validate_email(v)


class AccountUpdate(BaseModel):
    """Schema for updating account metadata."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_email(v)


class Admin(BaseModel):
    """Admin credential holder. At most one exists."""

    admin_id: int
    username: str
    password_hash: str
    created_at: datetime


class AdminCredentials(BaseModel):
    """Username/password pair for admin setup and login."""

    username: str = Field(..., min_length=1, max_length=450)
    password: str = Field(..., min_length=1, max_length=256)
