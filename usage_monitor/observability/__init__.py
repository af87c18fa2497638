"""
Observability infrastructure for production monitoring.

Components:
- metrics.py: Prometheus metrics (counters, histograms, gauges)
- logging.py: Structured JSON logging with request context
- logging_middleware.py / middleware.py: request logging and metric tracking
"""

from usage_monitor.observability.metrics import (
    track_admission_failure,
    track_capacity_rejection,
    track_charge,
    track_charge_conflict,
    track_persistence_failure,
    track_request,
)

__all__ = [
    "track_request",
    "track_charge",
    "track_charge_conflict",
    "track_capacity_rejection",
    "track_persistence_failure",
    "track_admission_failure",
]
