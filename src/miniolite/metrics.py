"""Prometheus metrics definitions for miniolite.

All metrics use the ``miniolite_`` prefix for namespace isolation. They are
opt-in: until :func:`init_metrics` is called the module-level references
stay ``None``, nothing is registered in the global prometheus_client
registry, and the ``record_*`` helpers do nothing.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Client operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Transport failures (no HTTP response received)
# ---------------------------------------------------------------------------
transport_errors_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
bytes_received_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics. Idempotent."""
    global _initialized
    global operations_total, transport_errors_total
    global bytes_sent_total, bytes_received_total

    if _initialized:
        return

    operations_total = Counter(
        "miniolite_operations_total",
        "Total client operations by type and outcome",
        ["operation", "status"],
    )

    transport_errors_total = Counter(
        "miniolite_transport_errors_total",
        "Requests that failed before an HTTP response was received",
    )

    bytes_sent_total = Counter(
        "miniolite_bytes_sent_total",
        "Total bytes sent in request bodies",
    )

    bytes_received_total = Counter(
        "miniolite_bytes_received_total",
        "Total bytes received in response bodies",
    )

    _initialized = True


def record_operation(operation: str, ok: bool) -> None:
    if operations_total is not None:
        operations_total.labels(operation=operation, status="success" if ok else "error").inc()


def record_transport_error() -> None:
    if transport_errors_total is not None:
        transport_errors_total.inc()


def record_bytes(sent: int = 0, received: int = 0) -> None:
    if bytes_sent_total is not None and sent:
        bytes_sent_total.inc(sent)
    if bytes_received_total is not None and received:
        bytes_received_total.inc(received)
