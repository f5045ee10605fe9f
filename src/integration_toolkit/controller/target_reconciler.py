"""IntegrationTarget reconciler.

Resolves a target's kubeconfig Secret, registers the cluster in the
Target Registry and verifies it can be reached. Every outcome is
re-evaluated on the next pass; there is no terminal failure state.
"""

from __future__ import annotations

import threading
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from integration_toolkit.controller.result import ReconcileResult
from integration_toolkit.integrations.kubernetes.exceptions import (
    InvalidCredentialError,
    KubernetesError,
)
from integration_toolkit.models import (
    Condition,
    ConditionStatus,
    IntegrationTarget,
    ObjectKey,
    SecretReference,
    set_status_condition,
    utcnow,
)

if TYPE_CHECKING:
    from integration_toolkit.core.context import OperationContext
    from integration_toolkit.observability.metrics import ControllerMetrics
    from integration_toolkit.services.cluster.inventory import ClusterInventory
    from integration_toolkit.services.cluster.registry import TargetRegistry
    from integration_toolkit.services.kubernetes.resource_manager import ResourceManager

logger = structlog.get_logger()

READY_CONDITION = "Ready"


class TargetReason(StrEnum):
    READY = "TargetReady"
    SECRET_NOT_FOUND = "SecretNotFound"
    INVALID_SECRET = "InvalidSecret"
    CONNECTION_FAILED = "ConnectionFailed"


class TargetReconciler:
    """Keeps the Target Registry in step with IntegrationTarget objects."""

    def __init__(
        self,
        resources: ResourceManager,
        registry: TargetRegistry,
        inventory: ClusterInventory,
        metrics: ControllerMetrics,
        *,
        resync_interval: float = 60,
        retry_interval: float = 30,
        connectivity_timeout: float = 10,
    ) -> None:
        """Initialize the reconciler.

        Args:
            resources: Control-plane resource access.
            registry: Shared Target Registry.
            inventory: Cluster inventory updated on successful probes.
            metrics: Metrics hooks.
            resync_interval: Interval of the periodic pass, also used after a
                misconfigured secret.
            retry_interval: Retry delay after a missing secret or unreachable cluster.
            connectivity_timeout: Seconds allowed for the connectivity probe.
        """
        self._resources = resources
        self._registry = registry
        self._inventory = inventory
        self._metrics = metrics
        self._resync_interval = resync_interval
        self._retry_interval = retry_interval
        self._connectivity_timeout = connectivity_timeout
        # Cluster name each target last registered, for cleanup after deletion
        self._registered: dict[ObjectKey, str] = {}
        self._registered_lock = threading.Lock()
        self._log = logger.bind(entity="target_reconciler")

    def reconcile(self, ctx: OperationContext, target: IntegrationTarget) -> ReconcileResult:
        key = target.key
        log = self._log.bind(target=str(key))
        cluster = target.cluster_name
        namespace = key.namespace
        self._remember(key, cluster)
        log = log.bind(cluster=cluster)

        found = self._read_credentials(target)
        if found is None:
            names = ", ".join(f"'{ref.name}'" for ref in target.secret_candidates())
            return self._not_ready(
                target,
                TargetReason.SECRET_NOT_FOUND,
                f"secret {names} not found in namespace '{namespace}'",
                self._retry_interval,
                retry=True,
            )

        ref, data = found
        credential = data.get(ref.key)
        if not credential:
            return self._not_ready(
                target,
                TargetReason.INVALID_SECRET,
                f"secret '{ref.name}' has no '{ref.key}' key",
                self._resync_interval,
            )

        try:
            self._registry.add_or_update(cluster, namespace, credential, labels=target.spec.labels)
        except InvalidCredentialError as e:
            return self._not_ready(
                target, TargetReason.INVALID_SECRET, str(e), self._resync_interval
            )

        ctx.check()
        try:
            version = self._registry.verify_connectivity(
                cluster,
                namespace,
                timeout=ctx.remaining(self._connectivity_timeout),
            )
        except KubernetesError as e:
            self._metrics.set_cluster_connection_status(cluster, False)
            self._inventory.set_status(cluster, namespace, "Unreachable")
            return self._not_ready(
                target,
                TargetReason.CONNECTION_FAILED,
                f"cannot reach cluster '{cluster}': {e}",
                self._retry_interval,
                retry=True,
            )

        self._metrics.set_cluster_connection_status(cluster, True)
        self._inventory.touch(
            cluster,
            namespace,
            status="Ready",
            version=version,
            labels=target.spec.labels,
        )

        now = utcnow()
        message = f"Cluster {cluster} is reachable ({version})"
        status = target.status
        status.ready = True
        status.message = message
        status.last_sync_time = now
        status.observed_generation = target.metadata.generation
        set_status_condition(
            status.conditions,
            Condition(
                type=READY_CONDITION,
                status=ConditionStatus.TRUE,
                reason=TargetReason.READY.value,
                message=message,
                observed_generation=target.metadata.generation,
            ),
            now,
        )
        self._resources.update_target_status(target)
        log.info("target_ready", version=version)
        return ReconcileResult(requeue_after=self._resync_interval)

    def _read_credentials(
        self, target: IntegrationTarget
    ) -> tuple[SecretReference, dict[str, bytes]] | None:
        """Return the first existing candidate secret and its data."""
        for ref in target.secret_candidates():
            data = self._resources.get_secret_data(ref.name, target.metadata.namespace)
            if data is not None:
                return ref, data
        return None

    def _not_ready(
        self,
        target: IntegrationTarget,
        reason: TargetReason,
        message: str,
        requeue_after: float,
        *,
        retry: bool = False,
    ) -> ReconcileResult:
        self._log.warning(
            "target_not_ready",
            target=str(target.key),
            cluster=target.cluster_name,
            reason=reason.value,
            detail=message,
        )
        status = target.status
        status.ready = False
        status.message = message
        status.observed_generation = target.metadata.generation
        set_status_condition(
            status.conditions,
            Condition(
                type=READY_CONDITION,
                status=ConditionStatus.FALSE,
                reason=reason.value,
                message=message,
                observed_generation=target.metadata.generation,
            ),
        )
        self._resources.update_target_status(target)
        return ReconcileResult(requeue_after=requeue_after, retry=retry, message=message)

    def _remember(self, key: ObjectKey, cluster: str) -> None:
        with self._registered_lock:
            previous = self._registered.get(key)
            self._registered[key] = cluster
        if previous is not None and previous != cluster:
            # clusterName changed; the old entry belongs to nobody now
            self._registry.remove(previous, key.namespace)
            self._inventory.remove(previous, key.namespace)

    def forget(self, key: ObjectKey) -> None:
        """Drop the cluster a deleted target registered."""
        with self._registered_lock:
            cluster = self._registered.pop(key, None)
        cluster = cluster or key.name
        self._registry.remove(cluster, key.namespace)
        self._inventory.remove(cluster, key.namespace)
        self._metrics.cluster_connection_status.remove(cluster=cluster)
        self._log.info("target_removed", target=str(key), cluster=cluster)
