"""
idgen_sdk.tier0_core.metrics
─────────────────────────────
Counters, gauges, and histograms with standard naming and labels, plus the
instruments the generators update. Exported via a Prometheus /metrics
endpoint.

Minimal stack: prometheus-client
Configure via: IDGEN_METRICS_PORT (default: 8001)
"""
from __future__ import annotations

from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from idgen_sdk.tier0_core.config import get_config

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_DEFAULT_LABEL_VALUES = {"service": get_config().app_name, "env": get_config().environment}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard labels.

    Usage:
        issued = counter("idgen_ids_issued_total", "IDs issued", ["generator"])
        issued(generator="snowflake").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _counter


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """Create a gauge with standard labels."""
    all_labels = _DEFAULT_LABELS + (labels or [])
    g = Gauge(name, description, all_labels)

    def _gauge(**extra_labels: str) -> Gauge:
        return g.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _gauge


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = (0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
) -> Callable:
    """
    Create a histogram with standard labels.

    Usage:
        fetch = histogram("idgen_lease_fetch_seconds", "Lease fetch latency")
        start = time.monotonic()
        ...
        fetch().observe(time.monotonic() - start)
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    h = Histogram(name, description, all_labels, buckets=buckets)

    def _histogram(**extra_labels: str) -> Histogram:
        return h.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _histogram


def start_metrics_server(port: int | None = None) -> None:
    """
    Start the Prometheus HTTP metrics server on a dedicated port.
    Call once at application startup.
    """
    port = port or get_config().metrics_port
    start_http_server(port)


# ── Generator instruments ─────────────────────────────────────────────────────

ids_issued = counter("idgen_ids_issued_total", "IDs issued", ["generator"])
sequence_waits = counter(
    "idgen_sequence_waits_total", "Waits for the next time unit after sequence overflow"
)
generation_errors = counter("idgen_errors_total", "Failed ID requests", ["kind"])
lease_reloads = counter("idgen_lease_reloads_total", "Leases fetched from the counter store")
lease_counter = gauge("idgen_lease_counter", "Counter value of the current lease")
lease_fetch_seconds = histogram("idgen_lease_fetch_seconds", "Counter store increment latency")


__all__ = [
    "counter", "gauge", "histogram", "start_metrics_server",
    "ids_issued", "sequence_waits", "generation_errors",
    "lease_reloads", "lease_counter", "lease_fetch_seconds",
]
