"""
Configuration management for the usage monitor.

Uses Pydantic Settings for type-safe configuration with multiple sources:
- Environment variables (highest priority)
- .env file
- Defaults (lowest priority)
"""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from usage_monitor.exceptions import InvalidConfigurationError

SUPPORTED_BACKENDS = {"sqlite"}


class StorageConfig(BaseSettings):
    """Ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: str = Field(
        default="sqlite",
        description="Storage backend (only 'sqlite' is supported)",
    )
    db_path: str = Field(default="./data/usage_monitor.db")
    busy_timeout_seconds: float = Field(
        default=30.0,
        ge=0.1,
        le=300.0,
        description="How long a connection waits on a locked database before failing",
    )

    @field_validator("backend")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        return v.strip().lower()


class MeteringConfig(BaseSettings):
    """Request metering and quota enforcement configuration."""

    model_config = SettingsConfigDict(
        env_prefix="METERING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Comma-separated path prefixes that are charged against the ledger
    monitored_paths: str = Field(
        default="/api/",
        description="Comma-separated path prefixes that consume capacity",
    )
    exempt_paths: str = Field(
        default="/api/usage-monitor,/health,/metrics,/docs,/redoc,/openapi.json",
        description="Comma-separated path prefixes that are never metered",
    )

    max_charge_attempts: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Attempts at select+increment before a charge is rejected as no capacity",
    )
    charge_retry_max_wait_ms: float = Field(
        default=25.0,
        ge=0.0,
        le=1000.0,
        description="Upper bound of the jittered wait between charge attempts",
    )

    log_rejected_requests: bool = Field(
        default=True,
        description="Write a log row (without ledger entry) for requests rejected for capacity",
    )
    operation_timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Timeout applied to the guarded operation (None = no timeout)",
    )

    @property
    def monitored_list(self) -> list[str]:
        return [p.strip() for p in self.monitored_paths.split(",") if p.strip()]

    @property
    def exempt_list(self) -> list[str]:
        return [p.strip() for p in self.exempt_paths.split(",") if p.strip()]


class AdminConfig(BaseSettings):
    """Admin directory configuration."""

    model_config = SettingsConfigDict(env_prefix="ADMIN_", extra="ignore")

    bcrypt_rounds: int = Field(default=12, ge=4, le=16)
    credential_cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
        description="How long verified admin credentials are cached (0 disables the cache)",
    )
    min_password_length: int = Field(default=8, ge=1, le=128)
    auth_rate_limit: str = Field(
        default="10/minute",
        description="slowapi limit for admin setup/login per client address",
    )


class ServiceConfig(BaseSettings):
    """FastAPI service configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVICE_", extra="ignore")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = Field(default=False)
    workers: int = Field(default=1, ge=1)


class CORSConfig(BaseSettings):
    """CORS configuration for API security."""

    model_config = SettingsConfigDict(env_prefix="CORS_", extra="ignore")

    allowed_origins: str = Field(
        default="*", description="Comma-separated list of allowed origins (* for all, ONLY for dev)"
    )
    allow_credentials: bool = Field(default=True)
    allowed_methods: str = Field(default="GET,POST,PUT,DELETE,PATCH,OPTIONS")
    allowed_headers: str = Field(default="*")
    max_age: int = Field(default=600, ge=0, description="Preflight cache duration in seconds")

    @property
    def origins_list(self) -> list[str]:
        """Parse comma-separated origins into list."""
        if self.allowed_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def methods_list(self) -> list[str]:
        return [method.strip() for method in self.allowed_methods.split(",") if method.strip()]

    @property
    def headers_list(self) -> list[str]:
        if self.allowed_headers == "*":
            return ["*"]
        return [header.strip() for header in self.allowed_headers.split(",") if header.strip()]


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    json_output: bool = Field(
        default=True, description="Use JSON output (True for production, False for development)"
    )
    colorized: bool = Field(
        default=False, description="Colorize console output (only for development)"
    )

    slow_request_warning_ms: float = Field(default=250.0, ge=0.0)
    slow_request_error_ms: float = Field(default=1000.0, ge=0.0)

    # Service metadata (injected into all logs)
    service_name: str = Field(default="usage-monitor")
    service_version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production"] = Field(default="development")

    @field_validator("slow_request_error_ms")
    @classmethod
    def validate_slow_thresholds(cls, v: float, info) -> float:
        """Ensure error threshold is greater than warning threshold."""
        warning = info.data.get("slow_request_warning_ms")
        if warning is not None and v <= warning:
            raise ValueError(
                f"slow_request_error_ms ({v}) must be > slow_request_warning_ms ({warning})"
            )
        return v


class Settings(BaseSettings):
    """Root configuration for the usage monitor."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    metering: MeteringConfig = Field(default_factory=MeteringConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def validate_configuration(self) -> None:
        """
        Validate cross-field constraints and log warnings.
        Called at application startup.

        Raises:
            InvalidConfigurationError: If the storage backend is unsupported
        """
        if self.storage.backend not in SUPPORTED_BACKENDS:
            raise InvalidConfigurationError(
                f"Unsupported storage backend '{self.storage.backend}' "
                f"(supported: {', '.join(sorted(SUPPORTED_BACKENDS))})"
            )

        if not self.metering.monitored_list:
            logging.warning("No monitored paths configured - no request will be metered")

        overlap = [
            p
            for p in self.metering.monitored_list
            if any(p.startswith(e) for e in self.metering.exempt_list)
        ]
        if overlap:
            logging.warning(f"Monitored paths shadowed by exempt paths: {overlap}")

        if self.admin.bcrypt_rounds < 10:
            logging.warning(
                f"bcrypt rounds set to {self.admin.bcrypt_rounds} - use at least 10 in production"
            )


# Global settings instance (lazy-loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Settings: Application configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
    return _settings
