"""Controller metrics hooks.

In-process counters and gauges keyed by label tuples, named the way a
Prometheus exporter would publish them (``ksit_`` prefix). Exposition
is left to whatever embeds the controller; ``snapshot`` returns plain
data for diagnostics and tests.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

NAMESPACE = "ksit"


class _LabeledMetric:
    def __init__(self, name: str, help_text: str, labels: tuple[str, ...]) -> None:
        self.name = f"{NAMESPACE}_{name}"
        self.help_text = help_text
        self.label_names = labels
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(f"Expected labels {list(self.label_names)}, got {list(labels)}")
        return tuple(str(labels[name]) for name in self.label_names)


class Counter(_LabeledMetric):
    """Monotonically increasing value per label set."""

    def __init__(self, name: str, help_text: str, labels: tuple[str, ...]) -> None:
        super().__init__(name, help_text, labels)
        self._values: dict[tuple[str, ...], float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counter can only be incremented by non-negative values")
        key = self._key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> list[tuple[dict[str, str], float]]:
        with self._lock:
            return [(dict(zip(self.label_names, k, strict=True)), v) for k, v in self._values.items()]


class Gauge(_LabeledMetric):
    """Settable value per label set."""

    def __init__(self, name: str, help_text: str, labels: tuple[str, ...]) -> None:
        super().__init__(name, help_text, labels)
        self._values: dict[tuple[str, ...], float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = value

    def get(self, **labels: str) -> float | None:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key)

    def remove(self, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values.pop(key, None)

    def collect(self) -> list[tuple[dict[str, str], float]]:
        with self._lock:
            return [(dict(zip(self.label_names, k, strict=True)), v) for k, v in self._values.items()]


@dataclass
class _Observation:
    count: int = 0
    total: float = 0.0
    last: float = 0.0


class Summary(_LabeledMetric):
    """Count, sum and last value of observations per label set."""

    def __init__(self, name: str, help_text: str, labels: tuple[str, ...]) -> None:
        super().__init__(name, help_text, labels)
        self._values: dict[tuple[str, ...], _Observation] = defaultdict(_Observation)

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            obs = self._values[key]
            obs.count += 1
            obs.total += value
            obs.last = value

    def get(self, **labels: str) -> _Observation:
        key = self._key(labels)
        with self._lock:
            obs = self._values.get(key)
            return _Observation(obs.count, obs.total, obs.last) if obs else _Observation()

    def collect(self) -> list[tuple[dict[str, str], dict[str, float]]]:
        with self._lock:
            return [
                (
                    dict(zip(self.label_names, k, strict=True)),
                    {"count": v.count, "sum": v.total, "last": v.last},
                )
                for k, v in self._values.items()
            ]


class ControllerMetrics:
    """The metrics the reconcilers emit.

    One instance per process, injected into the reconcilers.
    """

    def __init__(self) -> None:
        self.reconcile_total = Counter(
            "integration_reconcile_total",
            "Total number of Integration reconciles by outcome",
            ("integration", "type", "status"),
        )
        self.reconcile_duration = Summary(
            "reconcile_duration_seconds",
            "Duration of Integration reconciles",
            ("integration", "type"),
        )
        self.integration_status = Gauge(
            "integration_status",
            "Health of an Integration's tool on a cluster (1 healthy, 0 not)",
            ("integration", "type", "cluster"),
        )
        self.cluster_connection_status = Gauge(
            "cluster_connection_status",
            "Connectivity of a registered cluster (1 connected, 0 not)",
            ("cluster",),
        )
        self.sync_operations_total = Counter(
            "sync_operations_total",
            "Per-cluster install and health passes by outcome",
            ("integration", "cluster", "status"),
        )
        self.sync_latency = Summary(
            "sync_latency_seconds",
            "Seconds from the start of a reconcile until a cluster finished",
            ("integration", "cluster"),
        )

    def record_reconcile(self, integration: str, integration_type: str, status: str) -> None:
        self.reconcile_total.inc(integration=integration, type=integration_type, status=status)

    def observe_reconcile_duration(
        self, integration: str, integration_type: str, seconds: float
    ) -> None:
        self.reconcile_duration.observe(seconds, integration=integration, type=integration_type)

    def set_integration_status(
        self, integration: str, integration_type: str, cluster: str, healthy: bool
    ) -> None:
        self.integration_status.set(
            1.0 if healthy else 0.0,
            integration=integration,
            type=integration_type,
            cluster=cluster,
        )

    def set_cluster_connection_status(self, cluster: str, connected: bool) -> None:
        self.cluster_connection_status.set(1.0 if connected else 0.0, cluster=cluster)

    def record_sync_operation(self, integration: str, cluster: str, status: str) -> None:
        self.sync_operations_total.inc(integration=integration, cluster=cluster, status=status)

    def observe_sync_latency(self, integration: str, cluster: str, seconds: float) -> None:
        self.sync_latency.observe(seconds, integration=integration, cluster=cluster)

    def snapshot(self) -> dict[str, Any]:
        """All current values, keyed by metric name."""
        return {
            metric.name: metric.collect()
            for metric in (
                self.reconcile_total,
                self.reconcile_duration,
                self.integration_status,
                self.cluster_connection_status,
                self.sync_operations_total,
                self.sync_latency,
            )
        }
