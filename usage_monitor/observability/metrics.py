"""
Prometheus metrics for the usage monitor.

Metrics tracked:
- Request latency (histogram) and count (counter) per endpoint
- Active requests (gauge)
- Charges committed against the ledger (counter)
- Capacity rejections, charge conflicts, persistence failures (counters)
- Admin credential cache hits/misses (counters)
- Remaining capacity of the account (gauge)

Exposed via the /metrics endpoint for Prometheus scraping.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ============================================================================
# REQUEST METRICS
# ============================================================================

http_request_duration_seconds = Histogram(
    "usage_monitor_http_request_duration_seconds",
    "HTTP request latency in seconds",
    labelnames=["method", "endpoint", "status_code"],
    buckets=(0.005, 0.010, 0.025, 0.050, 0.100, 0.250, 0.500, 1.000, 2.500, 5.000, 10.000),
)

http_requests_total = Counter(
    "usage_monitor_http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status_code"],
)

http_requests_active = Gauge(
    "usage_monitor_http_requests_active",
    "Number of in-flight HTTP requests",
    labelnames=["method", "endpoint"],
)

# ============================================================================
# LEDGER METRICS
# ============================================================================

ledger_charges_total = Counter(
    "usage_monitor_ledger_charges_total",
    "Requests charged against a ledger entry",
)

capacity_rejections_total = Counter(
    "usage_monitor_capacity_rejections_total",
    "Requests rejected because no ledger entry had remaining capacity",
)

charge_conflicts_total = Counter(
    "usage_monitor_charge_conflicts_total",
    "Charge attempts retried after losing a race on a ledger entry",
)

persistence_failures_total = Counter(
    "usage_monitor_persistence_failures_total",
    "Storage failures while charging or logging",
    labelnames=["operation"],
)

admission_failures_total = Counter(
    "usage_monitor_admission_failures_total",
    "Monitored requests rejected before execution",
    labelnames=["reason"],
)

remaining_capacity = Gauge(
    "usage_monitor_remaining_capacity",
    "Remaining requests across all ledger entries of the account",
)

# ============================================================================
# ADMIN METRICS
# ============================================================================

admin_credential_cache_hits_total = Counter(
    "usage_monitor_admin_credential_cache_hits_total",
    "Admin credential checks served from cache",
)

admin_credential_cache_misses_total = Counter(
    "usage_monitor_admin_credential_cache_misses_total",
    "Admin credential checks that required bcrypt verification",
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def track_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Track HTTP request metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: API endpoint path
        status_code: HTTP status code
        duration_seconds: Request duration in seconds
    """
    http_request_duration_seconds.labels(
        method=method,
        endpoint=endpoint,
        status_code=status_code,
    ).observe(duration_seconds)

    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status_code=status_code,
    ).inc()


def track_charge() -> None:
    ledger_charges_total.inc()


def track_capacity_rejection() -> None:
    capacity_rejections_total.inc()


def track_charge_conflict() -> None:
    charge_conflicts_total.inc()


def track_persistence_failure(operation: str) -> None:
    persistence_failures_total.labels(operation=operation).inc()


def track_admission_failure(reason: str) -> None:
    """Track a request rejected before execution (not_provisioned, no_capacity)."""
    admission_failures_total.labels(reason=reason).inc()


def set_remaining_capacity(remaining: int) -> None:
    remaining_capacity.set(remaining)


def track_admin_cache_hit() -> None:
    admin_credential_cache_hits_total.inc()


def track_admin_cache_miss() -> None:
    admin_credential_cache_misses_total.inc()


# ============================================================================
# METRICS ENDPOINT
# ============================================================================


def generate_metrics() -> tuple[bytes, str]:
    """
    Generate Prometheus metrics in exposition format (bytes).

    Returns:
        tuple: (metrics_bytes, content_type)
    """
    metrics_data = generate_latest(REGISTRY)
    return metrics_data, CONTENT_TYPE_LATEST
