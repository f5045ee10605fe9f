"""In-memory inventory of known clusters and its stale-entry janitor."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

import structlog

from integration_toolkit.models import utcnow
from integration_toolkit.services.cluster.registry import registry_key

logger = structlog.get_logger()


@dataclass
class ClusterInfo:
    """What the controller last observed about a cluster."""

    name: str
    namespace: str
    status: str
    version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    last_seen: datetime = field(default_factory=utcnow)


class ClusterInventory:
    """Thread-safe record of cluster observations.

    Independent of the Target Registry: pruning the inventory never drops
    connection descriptors.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clusters: dict[str, ClusterInfo] = {}

    def touch(
        self,
        name: str,
        namespace: str,
        *,
        status: str = "Ready",
        version: str = "",
        labels: dict[str, str] | None = None,
        now: datetime | None = None,
    ) -> ClusterInfo:
        """Record a fresh observation of a cluster."""
        info = ClusterInfo(
            name=name,
            namespace=namespace,
            status=status,
            version=version,
            labels=dict(labels or {}),
            last_seen=now or utcnow(),
        )
        with self._lock:
            self._clusters[registry_key(name, namespace)] = info
        return replace(info)

    def set_status(self, name: str, namespace: str, status: str) -> None:
        """Update the status of a known cluster without refreshing last_seen."""
        with self._lock:
            info = self._clusters.get(registry_key(name, namespace))
            if info is not None:
                info.status = status

    def get(self, name: str, namespace: str) -> ClusterInfo | None:
        with self._lock:
            info = self._clusters.get(registry_key(name, namespace))
            return replace(info) if info is not None else None

    def remove(self, name: str, namespace: str) -> None:
        with self._lock:
            self._clusters.pop(registry_key(name, namespace), None)

    def list_clusters(self) -> list[ClusterInfo]:
        with self._lock:
            return [replace(info) for info in self._clusters.values()]

    def cleanup_stale(self, max_age: timedelta, now: datetime | None = None) -> list[str]:
        """Drop clusters not seen within ``max_age``.

        Returns:
            Keys of the removed entries.
        """
        cutoff = (now or utcnow()) - max_age
        with self._lock:
            stale = [key for key, info in self._clusters.items() if info.last_seen < cutoff]
            for key in stale:
                del self._clusters[key]
        return stale


class StaleClusterJanitor:
    """Single long-lived thread that prunes the inventory periodically.

    ``start`` may be called any number of times; at most one thread runs.
    """

    def __init__(
        self,
        inventory: ClusterInventory,
        *,
        max_age: float,
        period: float,
    ) -> None:
        """Initialize the janitor.

        Args:
            inventory: Inventory to prune.
            max_age: Seconds after which an unseen cluster is dropped.
            period: Seconds between cleanup passes.
        """
        self._inventory = inventory
        self._max_age = timedelta(seconds=max_age)
        self._period = period
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(entity="stale_cluster_janitor")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the cleanup thread unless it is already running.

        Returns:
            True if a new thread was started.
        """
        with self._lock:
            if self.running:
                return False
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._loop,
                name="stale-cluster-janitor",
                daemon=True,
            )
            self._thread.start()
        self._log.info("janitor_started", period=self._period)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to exit and wait for it."""
        self._stop.set()
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout)

    def run_once(self) -> list[str]:
        """Perform one cleanup pass."""
        removed = self._inventory.cleanup_stale(self._max_age)
        if removed:
            self._log.info("stale_clusters_removed", clusters=removed)
        return removed

    def _loop(self) -> None:
        while not self._stop.wait(self._period):
            try:
                self.run_once()
            except Exception:
                self._log.exception("stale_cluster_cleanup_failed")
