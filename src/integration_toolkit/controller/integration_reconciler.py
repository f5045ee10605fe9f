"""Integration reconciler.

Drives one Integration through install and health checking on every
target cluster and is the only writer of its status. Clusters are
processed independently: an install failure on one cluster skips the
health check for that cluster only, and every failure is reported.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from integration_toolkit.controller.result import ReconcileResult
from integration_toolkit.integrations.kubernetes.exceptions import KubernetesError
from integration_toolkit.models import (
    ClusterStatus,
    Condition,
    ConditionStatus,
    Integration,
    IntegrationPhase,
    IntegrationType,
    UnsupportedIntegrationTypeError,
    set_status_condition,
    utcnow,
    validate_integration_spec,
)
from integration_toolkit.services.cluster.registry import NotRegisteredError
from integration_toolkit.services.health.base import HealthReason
from integration_toolkit.services.installer.base import InstallerError
from integration_toolkit.services.mesh import mtls_requested

if TYPE_CHECKING:
    from datetime import datetime

    from integration_toolkit.core.context import OperationContext
    from integration_toolkit.observability.metrics import ControllerMetrics
    from integration_toolkit.services.cluster.registry import TargetRegistry
    from integration_toolkit.services.health.base import HealthChecker
    from integration_toolkit.services.health.checkers import HealthCheckerFactory
    from integration_toolkit.services.installer.base import Installer
    from integration_toolkit.services.installer.factory import InstallerFactory
    from integration_toolkit.services.kubernetes.resource_manager import ResourceManager
    from integration_toolkit.services.mesh import MeshConfigurator

logger = structlog.get_logger()

READY_CONDITION = "Ready"
DEGRADED_CONDITION = "Degraded"

DISABLED_MESSAGE = "Integration is disabled"
RUNNING_MESSAGE = "Integration is running"
HEALTHY_MESSAGE = "Integration is healthy"


class ReconcileReason(StrEnum):
    SUCCEEDED = "ReconcileSucceeded"
    FAILED = "ReconcileFailed"
    DISABLED = "IntegrationDisabled"
    INVALID_SPEC = "InvalidSpec"
    ALL_HEALTHY = "AllClustersHealthy"
    CLUSTERS_FAILING = "ClustersFailing"


class ClusterReason(StrEnum):
    HEALTHY = "Healthy"
    NOT_REGISTERED = "NotRegistered"
    CONNECTION_FAILED = "ConnectionFailed"
    INSTALL_FAILED = "InstallFailed"
    HEALTH_CHECK_FAILED = "HealthCheckFailed"
    MTLS_POLICY_FAILED = "MTLSPolicyFailed"


_HEALTH_REASONS = {
    HealthReason.HEALTHY: ClusterReason.HEALTHY,
    HealthReason.HEALTH_CHECK_FAILED: ClusterReason.HEALTH_CHECK_FAILED,
    HealthReason.CONNECTION_FAILED: ClusterReason.CONNECTION_FAILED,
}


def mtls_wanted(integration: Integration) -> bool:
    return integration.spec.type == IntegrationType.ISTIO and mtls_requested(
        integration.spec.config
    )


@dataclass
class ClusterOutcome:
    """What happened to one target cluster in one pass."""

    cluster: str
    reason: ClusterReason
    message: str = ""
    connected: bool = False
    installed: bool | None = None

    @property
    def healthy(self) -> bool:
        return self.reason is ClusterReason.HEALTHY

    def describe(self) -> str:
        return f"cluster {self.cluster}: {self.message}"


class IntegrationReconciler:
    """Reconciles Integration objects against their target clusters."""

    def __init__(
        self,
        resources: ResourceManager,
        registry: TargetRegistry,
        installers: InstallerFactory,
        checkers: HealthCheckerFactory,
        metrics: ControllerMetrics,
        *,
        mesh: MeshConfigurator | None = None,
        reconcile_interval: float = 30,
        cluster_concurrency: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the reconciler.

        Args:
            resources: Control-plane resource access.
            registry: Shared Target Registry, read only here.
            installers: Installer per tool type.
            checkers: Health checker per tool type.
            metrics: Metrics hooks.
            mesh: Applies mesh policy for istio integrations that ask for it.
            reconcile_interval: Interval of the periodic pass.
            cluster_concurrency: Target clusters processed in parallel.
            clock: Monotonic clock used for the duration and latency metrics.
        """
        self._resources = resources
        self._registry = registry
        self._installers = installers
        self._checkers = checkers
        self._metrics = metrics
        self._mesh = mesh
        self._interval = reconcile_interval
        self._cluster_concurrency = max(1, cluster_concurrency)
        self._clock = clock
        self._log = logger.bind(entity="integration_reconciler")

    def reconcile(self, ctx: OperationContext, integration: Integration) -> ReconcileResult:
        """Install and health-check ``integration`` on its clusters and write its status."""
        started = self._clock()
        name = str(integration.key)
        integration_type = integration.spec.type
        try:
            result = self._reconcile(ctx, integration)
        except Exception:
            self._metrics.record_reconcile(name, integration_type, "error")
            raise
        finally:
            self._metrics.observe_reconcile_duration(
                name, integration_type, self._clock() - started
            )
        return result

    def _reconcile(self, ctx: OperationContext, integration: Integration) -> ReconcileResult:
        log = self._log.bind(integration=str(integration.key), type=integration.spec.type)
        status = integration.status

        if not integration.spec.enabled:
            log.info("integration_disabled")
            self._set_phase(
                integration,
                IntegrationPhase.FAILED,
                DISABLED_MESSAGE,
                ReconcileReason.DISABLED,
            )
            self._resources.update_integration_status(integration)
            self._metrics.record_reconcile(str(integration.key), integration.spec.type, "disabled")
            return ReconcileResult()

        if not status.phase:
            status.phase = IntegrationPhase.INITIALIZING.value
            status.message = "Integration is initializing"
            self._resources.update_integration_status(integration)

        errors = validate_integration_spec(integration.metadata.name, integration.spec)
        if errors:
            message = "; ".join(errors)
            log.warning("integration_spec_invalid", errors=errors)
            return self._finish(
                integration, [], message, ReconcileReason.INVALID_SPEC
            )

        integration_type = IntegrationType(integration.spec.type)
        namespace = integration.effective_namespace(integration_type.default_namespace)
        try:
            checker = self._checkers.get(integration_type)
            installer = (
                self._installers.get(integration_type)
                if integration.spec.auto_install_enabled
                else None
            )
        except UnsupportedIntegrationTypeError as e:
            return self._finish(integration, [], str(e), ReconcileReason.FAILED)

        outcomes = self._process_clusters(ctx, integration, namespace, installer, checker)
        failures = [o for o in outcomes if not o.healthy]
        message = "; ".join(o.describe() for o in failures)
        return self._finish(integration, outcomes, message, ReconcileReason.FAILED)

    # =========================================================================
    # Per-cluster work
    # =========================================================================

    def _process_clusters(
        self,
        ctx: OperationContext,
        integration: Integration,
        namespace: str,
        installer: Installer | None,
        checker: HealthChecker,
    ) -> list[ClusterOutcome]:
        clusters = integration.spec.target_clusters

        def _run(cluster: str) -> ClusterOutcome:
            return self._process_cluster(ctx, integration, cluster, namespace, installer, checker)

        if self._cluster_concurrency == 1 or len(clusters) == 1:
            return [_run(cluster) for cluster in clusters]

        workers = min(self._cluster_concurrency, len(clusters))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="ksit-cluster"
        ) as executor:
            return list(executor.map(_run, clusters))

    def _process_cluster(
        self,
        ctx: OperationContext,
        integration: Integration,
        cluster: str,
        namespace: str,
        installer: Installer | None,
        checker: HealthChecker,
    ) -> ClusterOutcome:
        started = self._clock()
        outcome = self._sync_cluster(ctx, integration, cluster, namespace, installer, checker)
        name = str(integration.key)
        self._metrics.record_sync_operation(
            name, cluster, "success" if outcome.healthy else "failed"
        )
        self._metrics.observe_sync_latency(name, cluster, self._clock() - started)
        return outcome

    def _sync_cluster(
        self,
        ctx: OperationContext,
        integration: Integration,
        cluster: str,
        namespace: str,
        installer: Installer | None,
        checker: HealthChecker,
    ) -> ClusterOutcome:
        log = self._log.bind(integration=str(integration.key), cluster=cluster)
        ctx.check()
        try:
            descriptor = self._registry.get(cluster, integration.metadata.namespace)
        except NotRegisteredError as e:
            log.warning("cluster_not_registered")
            return ClusterOutcome(cluster, ClusterReason.NOT_REGISTERED, str(e))

        installed: bool | None = None
        if installer is not None:
            release = ""
            try:
                release = installer.release_name(integration)
                lock = self._installers.release_lock(
                    descriptor.key, namespace, integration.spec.type, release
                )
                with lock:
                    installed = installer.is_installed(ctx, descriptor, integration)
                    if not installed:
                        action = installer.install(ctx, descriptor, integration)
                        installed = True
                        log.info("integration_installed", release=release, action=action.value)
            except InstallerError as e:
                log.error("install_failed", release=release, step=e.step.value, error=e.message)
                return ClusterOutcome(
                    cluster,
                    ClusterReason.INSTALL_FAILED,
                    str(e),
                    connected=True,
                    installed=installed,
                )
            except KubernetesError as e:
                return ClusterOutcome(
                    cluster, ClusterReason.CONNECTION_FAILED, str(e), installed=installed
                )

        result = checker.check_cluster(ctx, descriptor, namespace)
        reason = _HEALTH_REASONS[result.reason]
        mesh = self._mesh if mtls_wanted(integration) else None
        if reason is ClusterReason.HEALTHY and mesh is not None:
            try:
                if mesh.enable_mtls(ctx, descriptor, namespace):
                    log.info("mtls_policy_created", namespace=namespace)
            except KubernetesError as e:
                log.warning("mtls_policy_failed", error=str(e))
                return ClusterOutcome(
                    cluster,
                    ClusterReason.MTLS_POLICY_FAILED,
                    f"cannot apply mTLS policy: {e}",
                    connected=True,
                    installed=installed,
                )
        return ClusterOutcome(
            cluster,
            reason,
            result.message,
            connected=reason is not ClusterReason.CONNECTION_FAILED,
            installed=installed,
        )

    # =========================================================================
    # Status
    # =========================================================================

    def _finish(
        self,
        integration: Integration,
        outcomes: list[ClusterOutcome],
        failure_message: str,
        failure_reason: ReconcileReason,
    ) -> ReconcileResult:
        """Aggregate outcomes into status, persist it and requeue."""
        name = str(integration.key)
        integration_type = integration.spec.type
        now = utcnow()
        status = integration.status
        failed = bool(failure_message)

        if outcomes or not failed:
            status.cluster_statuses = self._cluster_statuses(integration, outcomes, now)

        if failed:
            self._set_phase(
                integration, IntegrationPhase.FAILED, failure_message, failure_reason, now
            )
        else:
            self._set_phase(
                integration,
                IntegrationPhase.RUNNING,
                RUNNING_MESSAGE,
                ReconcileReason.SUCCEEDED,
                now,
                condition_message=HEALTHY_MESSAGE,
            )

        healthy = sum(1 for o in outcomes if o.healthy)
        degraded = 0 < healthy < len(outcomes)
        set_status_condition(
            status.conditions,
            Condition(
                type=DEGRADED_CONDITION,
                status=ConditionStatus.TRUE if degraded else ConditionStatus.FALSE,
                reason=(
                    ReconcileReason.CLUSTERS_FAILING if degraded else ReconcileReason.ALL_HEALTHY
                ).value,
                message=f"{healthy}/{len(outcomes)} clusters healthy",
                observed_generation=integration.metadata.generation,
            ),
            now,
        )

        status.last_reconcile_time = now
        status.observed_generation = integration.metadata.generation
        self._resources.update_integration_status(integration)

        for outcome in outcomes:
            self._metrics.set_integration_status(
                name, integration_type, outcome.cluster, outcome.healthy
            )
        self._metrics.record_reconcile(name, integration_type, "failure" if failed else "success")

        if failed:
            self._log.warning(
                "integration_failed", integration=name, type=integration_type, detail=failure_message
            )
        else:
            self._log.info("integration_running", integration=name, clusters=len(outcomes))
        return ReconcileResult(requeue_after=self._interval)

    def _cluster_statuses(
        self,
        integration: Integration,
        outcomes: list[ClusterOutcome],
        now: datetime,
    ) -> list[ClusterStatus]:
        previous = {cs.name: cs for cs in integration.status.cluster_statuses}
        statuses = []
        for outcome in outcomes:
            last_seen = now if outcome.connected else None
            if last_seen is None and outcome.cluster in previous:
                last_seen = previous[outcome.cluster].last_seen
            statuses.append(
                ClusterStatus(
                    name=outcome.cluster,
                    connected=outcome.connected,
                    installed=outcome.installed,
                    healthy=outcome.healthy,
                    reason=outcome.reason.value,
                    message=outcome.message,
                    last_seen=last_seen,
                )
            )
        return statuses

    def _set_phase(
        self,
        integration: Integration,
        phase: IntegrationPhase,
        message: str,
        reason: ReconcileReason,
        now: datetime | None = None,
        *,
        condition_message: str | None = None,
    ) -> None:
        status = integration.status
        previous = status.phase
        status.phase = phase.value
        status.message = message
        set_status_condition(
            status.conditions,
            Condition(
                type=READY_CONDITION,
                status=(
                    ConditionStatus.TRUE
                    if phase is IntegrationPhase.RUNNING
                    else ConditionStatus.FALSE
                ),
                reason=reason.value,
                message=condition_message or message,
                observed_generation=integration.metadata.generation,
            ),
            now,
        )
        if previous != phase.value:
            self._log.info(
                "integration_phase_changed",
                integration=str(integration.key),
                previous=previous or None,
                phase=phase.value,
            )

    # =========================================================================
    # Deletion
    # =========================================================================

    def finalize(self, integration: Integration) -> None:
        """Mark every target cluster unhealthy before the object goes away.

        Installed releases are left on the target clusters.
        """
        name = str(integration.key)
        self._log.info("finalizing_integration", integration=name)
        for cluster in integration.spec.target_clusters:
            self._metrics.set_integration_status(name, integration.spec.type, cluster, False)

