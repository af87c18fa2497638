"""
Unit tests for config validation.

Tests validate_configuration and the field validators on the settings
sections.
"""

import logging

import pytest
from pydantic import ValidationError

from usage_monitor.config import (
    AdminConfig,
    CORSConfig,
    LoggingConfig,
    MeteringConfig,
    Settings,
    StorageConfig,
)
from usage_monitor.exceptions import InvalidConfigurationError


def test_default_settings_are_valid(caplog):
    settings = Settings(admin=AdminConfig(bcrypt_rounds=12))

    with caplog.at_level(logging.WARNING):
        settings.validate_configuration()

    assert caplog.records == []


def test_unsupported_backend_rejected():
    settings = Settings(storage=StorageConfig(backend=" Postgres "))

    assert settings.storage.backend == "postgres"
    with pytest.raises(InvalidConfigurationError, match="postgres"):
        settings.validate_configuration()


def test_empty_monitored_paths_warns(caplog):
    settings = Settings(
        metering=MeteringConfig(monitored_paths=" , "),
        admin=AdminConfig(bcrypt_rounds=12),
    )

    with caplog.at_level(logging.WARNING):
        settings.validate_configuration()

    assert "No monitored paths configured" in caplog.text


def test_shadowed_monitored_paths_warn(caplog):
    settings = Settings(
        metering=MeteringConfig(monitored_paths="/api/,/health/deep", exempt_paths="/health"),
        admin=AdminConfig(bcrypt_rounds=12),
    )

    with caplog.at_level(logging.WARNING):
        settings.validate_configuration()

    assert "/health/deep" in caplog.text
    assert "'/api/'" not in caplog.text


def test_low_bcrypt_rounds_warn(caplog):
    settings = Settings(admin=AdminConfig(bcrypt_rounds=4))

    with caplog.at_level(logging.WARNING):
        settings.validate_configuration()

    assert "bcrypt rounds set to 4" in caplog.text


def test_path_lists_are_parsed():
    metering = MeteringConfig(monitored_paths=" /api/ , /v2/ ,", exempt_paths="/health")

    assert metering.monitored_list == ["/api/", "/v2/"]
    assert metering.exempt_list == ["/health"]


def test_cors_lists():
    assert CORSConfig(allowed_origins="*").origins_list == ["*"]
    cors = CORSConfig(allowed_origins="https://a.example, https://b.example", allowed_headers="X-A,X-B")
    assert cors.origins_list == ["https://a.example", "https://b.example"]
    assert cors.headers_list == ["X-A", "X-B"]


def test_slow_request_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        LoggingConfig(slow_request_warning_ms=500.0, slow_request_error_ms=100.0)

    config = LoggingConfig(slow_request_warning_ms=100.0, slow_request_error_ms=500.0)
    assert config.slow_request_error_ms == 500.0


def test_operation_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        MeteringConfig(operation_timeout_seconds=0)

    assert MeteringConfig().operation_timeout_seconds is None
