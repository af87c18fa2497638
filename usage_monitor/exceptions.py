"""
Error taxonomy for the metering core.

- NotProvisionedError: no account exists yet (setup required, not retried)
- NoCapacityError: every ledger entry is exhausted (payment required)
- InvalidConfigurationError: fatal at startup (bad unit price, bad backend)
- ChargeConflictError: concurrent over-draw detected, retried locally
- PersistenceError: the charge could not be durably recorded (fail-closed)
"""


class UsageMonitorError(Exception):
    """Base class for all usage monitor errors."""

    pass


class NotProvisionedError(UsageMonitorError):
    """Raised when no account has been provisioned."""

    def __init__(self, message: str = "No account has been provisioned"):
        super().__init__(message)


class NoCapacityError(UsageMonitorError):
    """Raised when an account has no ledger entry with remaining capacity."""

    def __init__(self, account_id: int | None = None, message: str | None = None):
        self.account_id = account_id
        super().__init__(message or f"No remaining capacity for account {account_id}")


class InvalidConfigurationError(UsageMonitorError):
    """Raised for configuration that cannot be recovered from per request."""

    pass


class InvalidUnitPriceError(InvalidConfigurationError):
    """Raised when a ledger entry is created with a unit price <= 0."""

    def __init__(self, unit_price):
        self.unit_price = unit_price
        super().__init__(f"Unit price must be greater than zero, got {unit_price}")


class ChargeConflictError(UsageMonitorError):
    """Raised when the conditional increment loses a race with another charge."""

    pass


class PersistenceError(UsageMonitorError):
    """Raised when a storage transaction fails while charging or recording."""

    pass
