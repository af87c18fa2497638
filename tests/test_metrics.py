"""
Tests for Prometheus metrics.

Tests:
- Metrics endpoint returns Prometheus exposition format
- HTTP request tracking with normalized endpoints
- Ledger charge and rejection counters
"""

import asyncio
from decimal import Decimal

from prometheus_client import REGISTRY

from usage_monitor.models.account import AccountCreate
from usage_monitor.models.ledger import LedgerEntryCreate
from usage_monitor.observability.metrics import (
    generate_metrics,
    set_remaining_capacity,
    track_admission_failure,
    track_request,
)
from usage_monitor.observability.middleware import normalize_endpoint


def sample(name: str, labels: dict | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_metrics_endpoint_format(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
    assert "# HELP" in response.text
    assert "# TYPE" in response.text
    assert "usage_monitor_capacity_rejections_total" in response.text


def test_generate_metrics():
    payload, content_type = generate_metrics()

    assert b"usage_monitor_ledger_charges_total" in payload
    assert content_type.startswith("text/plain")


def test_track_request():
    labels = {"method": "GET", "endpoint": "/api/test", "status_code": "200"}
    before = sample("usage_monitor_http_requests_total", labels)

    track_request("GET", "/api/test", 200, 0.05)

    assert sample("usage_monitor_http_requests_total", labels) == before + 1


def test_track_admission_failure_and_gauge():
    before = sample("usage_monitor_admission_failures_total", {"reason": "not_provisioned"})

    track_admission_failure("not_provisioned")
    set_remaining_capacity(17)

    assert sample("usage_monitor_admission_failures_total", {"reason": "not_provisioned"}) == before + 1
    assert sample("usage_monitor_remaining_capacity") == 17


def test_normalize_endpoint():
    assert normalize_endpoint("/api/orders/123") == "/api/orders/{id}"
    assert normalize_endpoint("/api/orders/123/items/9") == "/api/orders/{id}/items/{id}"
    assert normalize_endpoint("/api/v2/orders") == "/api/v2/orders"


def test_charges_and_rejections_are_counted(client, empty_db):
    asyncio.run(
        empty_db.create_account(
            AccountCreate(name="Acme", email="ops@acme.example"),
            initial_payment=LedgerEntryCreate(amount=Decimal("1.00"), unit_price=Decimal("1.00")),
        )
    )
    charges = sample("usage_monitor_ledger_charges_total")
    rejections = sample("usage_monitor_admission_failures_total", {"reason": "no_capacity"})

    assert client.get("/api/echo").status_code == 200
    assert client.get("/api/echo").status_code == 402

    assert sample("usage_monitor_ledger_charges_total") == charges + 1
    assert sample("usage_monitor_remaining_capacity") == 0
    assert sample("usage_monitor_admission_failures_total", {"reason": "no_capacity"}) == rejections + 1


def test_requests_tracked_by_middleware(client):
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = sample("usage_monitor_http_requests_total", labels)

    client.get("/health")

    assert sample("usage_monitor_http_requests_total", labels) == before + 1
