"""Observability: in-process metrics exposed at ``GET /metrics``.

Structured logging lives in :mod:`ledgersync.core.logging`.
"""

from .metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    SyncMetrics,
    get_metrics_registry,
    sync_metrics,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "SyncMetrics",
    "get_metrics_registry",
    "sync_metrics",
]
