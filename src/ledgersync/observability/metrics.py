"""In-process Prometheus-style metrics.

Counters, gauges and histograms live in a :class:`MetricsRegistry` and are
rendered in the Prometheus text format by ``GET /metrics``.  They describe
what *this process* did (jobs it enqueued and finished, ledger call
latency); durable queue depth and error rate come from
``SyncQueueManager.metrics()`` instead.

Example:
    >>> registry = MetricsRegistry()
    >>> sync = SyncMetrics(registry)
    >>> sync.record_enqueued("high")
    >>> sync.enqueued.labels(queue="high").value
    1.0
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable, order-independent label set."""

    pairs: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> Labels:
        if not d:
            return cls(())
        return cls(tuple(sorted((k, str(v)) for k, v in d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.pairs)


class Metric(ABC):
    """Base class for metrics."""

    kind = "untyped"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._lock = threading.Lock()

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Snapshot of every label set for export."""
        ...


class Counter(Metric):
    """Monotonically increasing value (jobs enqueued, jobs finished)."""

    kind = "counter"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> CounterChild:
        return CounterChild(self, Labels.from_dict(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def _inc(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._values.get(labels, 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.kind, "labels": labels.to_dict(), "value": value}
                for labels, value in self._values.items()
            ]


class CounterChild:
    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        self._counter._inc(self._labels, value)

    @property
    def value(self) -> float:
        return self._counter._get(self._labels)


class Gauge(Metric):
    """Value that can go up or down (busy worker slots)."""

    kind = "gauge"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> GaugeChild:
        return GaugeChild(self, Labels.from_dict(kwargs))

    def set(self, value: float) -> None:
        self.labels().set(value)

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def dec(self, value: float = 1.0) -> None:
        self.labels().dec(value)

    def _add(self, labels: Labels, delta: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + delta

    def _set(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = value

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._values.get(labels, 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.kind, "labels": labels.to_dict(), "value": value}
                for labels, value in self._values.items()
            ]


class GaugeChild:
    def __init__(self, gauge: Gauge, labels: Labels):
        self._gauge = gauge
        self._labels = labels

    def set(self, value: float) -> None:
        self._gauge._set(self._labels, value)

    def inc(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, value)

    def dec(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, -value)

    @property
    def value(self) -> float:
        return self._gauge._get(self._labels)


class Histogram(Metric):
    """Distribution of observed values (ledger call duration)."""

    kind = "histogram"

    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf"))

    def __init__(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description, labels)
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._data: dict[Labels, dict[str, Any]] = {}

    def labels(self, **kwargs: str) -> HistogramChild:
        return HistogramChild(self, Labels.from_dict(kwargs))

    def observe(self, value: float) -> None:
        self.labels().observe(value)

    def _empty(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}

    def _observe(self, labels: Labels, value: float) -> None:
        with self._lock:
            data = self._data.setdefault(labels, self._empty())
            data["sum"] += value
            data["count"] += 1
            for bucket in self._buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def _get(self, labels: Labels) -> dict[str, Any]:
        with self._lock:
            return self._data.get(labels, self._empty())

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "name": self.name,
                    "type": self.kind,
                    "labels": labels.to_dict(),
                    "buckets": dict(data["buckets"]),
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for labels, data in self._data.items()
            ]


class HistogramChild:
    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)

    def time(self) -> Timer:
        """Context manager recording the block's wall time."""
        return Timer(self)

    @property
    def data(self) -> dict[str, Any]:
        return self._histogram._get(self._labels)


class Timer:
    def __init__(self, child: HistogramChild):
        self._child = child
        self._start = 0.0

    def __enter__(self) -> Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self._child.observe(time.perf_counter() - self._start)


class MetricsRegistry:
    """Get-or-create registry; export in Prometheus text format."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, factory: Any) -> Any:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            return self._metrics[name]

    def counter(self, name: str, description: str = "", labels: list[str] | None = None) -> Counter:
        return self._get_or_create(name, lambda: Counter(name, description, labels))

    def gauge(self, name: str, description: str = "", labels: list[str] | None = None) -> Gauge:
        return self._get_or_create(name, lambda: Gauge(name, description, labels))

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        return self._get_or_create(name, lambda: Histogram(name, description, labels, buckets))

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            metrics = list(self._metrics.values())
        results: list[dict[str, Any]] = []
        for metric in metrics:
            results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Render every metric in the Prometheus text exposition format."""
        with self._lock:
            metrics = list(self._metrics.values())

        lines: list[str] = []
        for metric in metrics:
            samples = metric.collect()
            if metric.description:
                lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for data in samples:
                label_str = _format_labels(data["labels"])
                if data["type"] == "histogram":
                    for bucket, count in data["buckets"].items():
                        le = "+Inf" if bucket == float("inf") else str(bucket)
                        lines.append(
                            f"{metric.name}_bucket{_format_labels({**data['labels'], 'le': le})} {count}"
                        )
                    lines.append(f"{metric.name}_sum{label_str} {data['sum']}")
                    lines.append(f"{metric.name}_count{label_str} {data['count']}")
                else:
                    lines.append(f"{metric.name}{label_str} {data['value']}")
        return "\n".join(lines) + "\n"


def _format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"


_default_registry = MetricsRegistry()


def get_metrics_registry() -> MetricsRegistry:
    return _default_registry


class SyncMetrics:
    """Pre-defined pipeline metrics."""

    def __init__(self, registry: MetricsRegistry | None = None):
        reg = registry or _default_registry

        self.enqueued = reg.counter(
            "ledgersync_jobs_enqueued_total",
            "Sync jobs created (coalesced enqueues excluded)",
            ["queue"],
        )
        self.finished = reg.counter(
            "ledgersync_jobs_finished_total",
            "Sync job attempts that ended, by resulting state",
            ["queue", "state"],
        )
        self.duration = reg.histogram(
            "ledgersync_job_duration_seconds",
            "Ledger call duration per attempt",
            ["queue"],
        )
        self.quarantined = reg.counter(
            "ledgersync_quarantine_captured_total",
            "Quarantine captures, including repeat occurrences",
            ["reason"],
        )
        self.busy_slots = reg.gauge(
            "ledgersync_worker_busy_slots",
            "Worker slots currently running a ledger call",
        )

    def record_enqueued(self, queue: str) -> None:
        self.enqueued.labels(queue=queue).inc()

    def record_finished(self, queue: str, state: str, duration: float | None = None) -> None:
        self.finished.labels(queue=queue, state=state).inc()
        if duration is not None:
            self.duration.labels(queue=queue).observe(duration)

    def record_quarantined(self, reason: str) -> None:
        self.quarantined.labels(reason=reason).inc()


sync_metrics = SyncMetrics()
