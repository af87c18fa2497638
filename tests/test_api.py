"""
API tests for the usage monitor.

Tests:
- Metering middleware: not provisioned, payment required, usage headers
- Exempt and non-monitored paths are never charged
- Handler errors and business outcomes are recorded
- Admin setup/login and admin-only endpoints
- Account, payments, logs and analytics endpoints
"""

import asyncio
from decimal import Decimal

from usage_monitor.billing.quota_middleware import UsageMonitoringMiddleware, path_has_prefix
from usage_monitor.models.account import AccountCreate
from usage_monitor.models.ledger import LedgerEntryCreate

API = "/api/usage-monitor"


def provision(db, amount="2.00", unit_price="1.00"):
    return asyncio.run(
        db.create_account(
            AccountCreate(name="Acme", email="ops@acme.example"),
            initial_payment=LedgerEntryCreate(
                amount=Decimal(amount), unit_price=Decimal(unit_price)
            ),
        )
    )


def all_logs(db):
    logs, _ = asyncio.run(db.get_logs(page_size=1000))
    return logs


# Metering middleware


def test_monitored_request_rejected_when_not_provisioned(client, empty_db):
    response = client.get("/api/echo")

    assert response.status_code == 503
    assert response.json()["error"] == "not_provisioned"
    assert all_logs(empty_db) == []


def test_monitored_requests_charged_until_payment_required(client, empty_db):
    provision(empty_db, amount="2.00", unit_price="1.00")

    first = client.get("/api/echo")
    second = client.get("/api/echo")
    third = client.get("/api/echo")

    assert first.status_code == 200
    assert first.json() == {"ok": True}
    assert first.headers["X-Usage-Remaining"] == "1"
    assert second.headers["X-Usage-Remaining"] == "0"
    assert first.headers["X-Usage-Total"] == "2"
    assert first.headers["X-Usage-Ledger-Entry"] == second.headers["X-Usage-Ledger-Entry"]

    assert third.status_code == 402
    assert third.json()["error"] == "payment_required"

    logs = all_logs(empty_db)
    assert len(logs) == 3
    assert sum(1 for log in logs if log.ledger_entry_id is not None) == 2
    assert [log.status_code for log in logs if log.ledger_entry_id is None] == [402]


def test_usage_headers_report_totals_across_ledger_entries(client, empty_db):
    account = provision(empty_db, amount="1.00", unit_price="1.00")
    asyncio.run(
        empty_db.add_ledger_entry(
            account.account_id,
            LedgerEntryCreate(amount=Decimal("5.00"), unit_price=Decimal("1.00")),
        )
    )

    first = client.get("/api/echo")
    second = client.get("/api/echo")

    assert first.headers["X-Usage-Remaining"] == "5"
    assert first.headers["X-Usage-Total"] == "6"
    assert second.headers["X-Usage-Remaining"] == "4"
    assert first.headers["X-Usage-Ledger-Entry"] != second.headers["X-Usage-Ledger-Entry"]


def test_exempt_and_unmonitored_paths_not_charged(client, empty_db):
    provision(empty_db)

    assert client.get("/health").status_code == 200
    assert client.get("/public/ping").status_code == 200
    assert client.get(f"{API}/logs").status_code == 200

    assert all_logs(empty_db) == []


def test_handler_http_error_recorded(client, empty_db):
    provision(empty_db)

    response = client.get("/api/missing")

    assert response.status_code == 404
    [log] = all_logs(empty_db)
    assert log.status_code == 404
    assert log.ledger_entry_id is not None


def test_unhandled_handler_error_recorded_as_500(lenient_client, empty_db):
    provision(empty_db)

    response = lenient_client.get("/api/boom")

    assert response.status_code == 500
    [log] = all_logs(empty_db)
    assert log.status_code == 500
    assert log.path == "/api/boom"


def test_business_exception_recorded_with_its_status(lenient_client, empty_db):
    provision(empty_db)

    lenient_client.get("/api/orders/0")

    [log] = all_logs(empty_db)
    assert log.status_code == 409


# Admin


def test_admin_setup_only_once(client, admin_auth):
    username, password = admin_auth
    assert client.get(f"{API}/admin/exists").json() == {"exists": False}

    first = client.post(
        f"{API}/admin/setup", json={"username": username, "password": password}
    )
    second = client.post(
        f"{API}/admin/setup", json={"username": "intruder", "password": "another-password"}
    )

    assert first.status_code == 201
    assert second.status_code == 400

    short = client.post(f"{API}/admin/setup", json={"username": "x", "password": "short"})
    assert short.status_code == 400
    assert client.get(f"{API}/admin/exists").json() == {"exists": True}


def test_admin_setup_rejects_short_password(client):
    response = client.post(f"{API}/admin/setup", json={"username": "admin", "password": "short"})

    assert response.status_code == 422
    assert client.get(f"{API}/admin/exists").json() == {"exists": False}


def test_admin_login(admin_client, admin_auth):
    username, password = admin_auth
    ok = admin_client.post(
        f"{API}/admin/login", json={"username": username, "password": password}
    )
    bad = admin_client.post(
        f"{API}/admin/login", json={"username": username, "password": "wrong-password"}
    )

    assert ok.status_code == 200
    assert ok.json() == {"authenticated": True, "username": username}
    assert bad.status_code == 401


def test_admin_login_is_rate_limited(admin_client, admin_auth):
    username, _ = admin_auth
    statuses = [
        admin_client.post(
            f"{API}/admin/login", json={"username": username, "password": "guess"}
        ).status_code
        for _ in range(11)
    ]

    assert statuses[:9] == [401] * 9
    assert statuses[-1] == 429


# Account


def test_create_account_requires_admin(admin_client, admin_auth):
    username, _ = admin_auth
    body = {"name": "Acme", "email": "ops@acme.example"}

    assert admin_client.post(f"{API}/account", json=body).status_code == 401
    assert (
        admin_client.post(f"{API}/account", json=body, auth=(username, "nope")).status_code
        == 401
    )


def test_account_lifecycle(admin_client, admin_auth):
    assert admin_client.get(f"{API}/account").status_code == 404

    created = admin_client.post(
        f"{API}/account",
        json={
            "name": "Acme",
            "email": "ops@acme.example",
            "initial_payment": {"amount": "100.00", "unit_price": "4.00"},
        },
        auth=admin_auth,
    )
    duplicate = admin_client.post(
        f"{API}/account", json={"name": "Other", "email": "o@x.example"}, auth=admin_auth
    )
    updated = admin_client.put(f"{API}/account", json={"name": "Acme Corp"}, auth=admin_auth)

    assert created.status_code == 201
    assert duplicate.status_code == 409
    assert updated.json()["name"] == "Acme Corp"
    assert admin_client.get(f"{API}/account").json()["email"] == "ops@acme.example"


def test_account_usage_count(admin_client, empty_db):
    provision(empty_db)
    admin_client.get("/api/echo")

    response = admin_client.get(f"{API}/account/usage")

    assert response.json()["count"] == 1


# Payments


def test_payments(admin_client, admin_auth, empty_db):
    provision(empty_db, amount="100.00", unit_price="4.00")

    added = admin_client.post(
        f"{API}/payments", json={"amount": "10.00", "unit_price": "2.50"}, auth=admin_auth
    )
    listed = admin_client.get(f"{API}/payments").json()

    assert added.status_code == 201
    assert added.json()["total_requests"] == 4
    assert [p["total_requests"] for p in listed] == [25, 4]
    assert listed[0]["remaining_requests"] == 25
    assert listed[0]["is_fully_utilized"] is False

    entry_id = added.json()["entry_id"]
    assert admin_client.get(f"{API}/payments/{entry_id}").json()["unit_price"] == "2.50"
    assert admin_client.get(f"{API}/payments/9999").status_code == 404


def test_payment_with_zero_unit_price_rejected(admin_client, admin_auth, empty_db):
    provision(empty_db)

    response = admin_client.post(
        f"{API}/payments", json={"amount": "10.00", "unit_price": "0"}, auth=admin_auth
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_configuration"


def test_payment_requires_admin(admin_client, empty_db):
    provision(empty_db)

    response = admin_client.post(f"{API}/payments", json={"amount": "10.00", "unit_price": "1"})

    assert response.status_code == 401


# Logs and analytics


def test_logs_endpoint_paginates(client, empty_db):
    provision(empty_db, amount="10.00", unit_price="1.00")
    for _ in range(3):
        client.get("/api/echo")

    page = client.get(f"{API}/logs", params={"page": 1, "pageSize": 2}).json()

    assert page["total_count"] == 3
    assert page["current_page"] == 1
    assert len(page["logs"]) == 2


def test_error_logs_endpoint(client, empty_db):
    provision(empty_db, amount="10.00", unit_price="1.00")
    client.get("/api/echo")
    client.get("/api/missing")

    errors = client.get(f"{API}/logs/errors").json()

    assert [log["status_code"] for log in errors] == [404]


def test_analytics_endpoints(client, empty_db):
    provision(empty_db, amount="10.00", unit_price="1.00")
    client.get("/api/echo")
    client.get("/api/missing")

    overview = client.get(f"{API}/analytics/overview").json()
    timeline = client.get(f"{API}/analytics/timeline", params={"window_days": 7}).json()
    endpoints = client.get(f"{API}/analytics/endpoints", params={"limit": 5}).json()
    response_times = client.get(f"{API}/analytics/response-times").json()
    monthly = client.get(f"{API}/analytics/usage").json()
    errors = client.get(f"{API}/analytics/errors").json()

    assert overview["total_requests"] == 2
    assert overview["capacity"]["remaining_requests"] == 8
    assert len(timeline) == 7
    assert timeline[-1]["total_requests"] == 2
    assert {e["path"] for e in endpoints} == {"/api/echo", "/api/missing"}
    assert response_times[-1]["request_count"] == 2
    assert sum(monthly.values()) == 2
    assert errors == {"404": 1}


def test_metrics_endpoint(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "usage_monitor_http_requests_total" in response.text
    assert "usage_monitor_ledger_charges_total" in response.text


def test_path_prefixes_match_whole_segments():
    middleware = UsageMonitoringMiddleware(
        app=None,
        monitored_paths=["/api/"],
        exempt_paths=["/api/usage-monitor", "/health"],
    )

    assert middleware.is_monitored("/api/orders/7")
    assert middleware.is_monitored("/api/usage-monitoring-x")
    assert middleware.is_monitored("/api/healthcheck")
    assert not middleware.is_monitored("/api/usage-monitor")
    assert not middleware.is_monitored("/api/usage-monitor/logs")
    assert not middleware.is_monitored("/health")
    assert not middleware.is_monitored("/apiary")
    assert path_has_prefix("/api", "/api/")
    assert not path_has_prefix("/healthz", "/health")
