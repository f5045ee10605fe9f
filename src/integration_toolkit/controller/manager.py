"""Controller manager: process-wide wiring and lifecycle.

The Target Registry, inventory, installer and checker factories are
built once here and shared by both reconcilers. kopf runs on its own
thread and event loop; the caller's thread keeps signal handling and
sets the shared stop event, which stops kopf and cancels in-flight
remote work.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import kopf
import structlog

from integration_toolkit.controller.integration_reconciler import IntegrationReconciler
from integration_toolkit.controller.operator import (
    IntegrationHandlers,
    TargetHandlers,
    build_registry,
)
from integration_toolkit.controller.target_reconciler import TargetReconciler
from integration_toolkit.integrations.kubernetes.client import KubernetesClient
from integration_toolkit.integrations.kubernetes.helm_client import HelmClient
from integration_toolkit.observability import ControllerMetrics
from integration_toolkit.services.cluster import (
    ClusterInventory,
    StaleClusterJanitor,
    TargetRegistry,
)
from integration_toolkit.services.health import HealthCheckerFactory
from integration_toolkit.services.installer import InstallerFactory
from integration_toolkit.services.kubernetes import ResourceManager
from integration_toolkit.services.mesh import MeshConfigurator

if TYPE_CHECKING:
    from integration_toolkit.core.config import ControllerSettings

logger = structlog.get_logger()


@dataclass
class ControllerComponents:
    """Shared collaborators built from settings."""

    client: KubernetesClient
    resources: ResourceManager
    registry: TargetRegistry
    inventory: ClusterInventory
    installers: InstallerFactory
    checkers: HealthCheckerFactory
    metrics: ControllerMetrics
    mesh: MeshConfigurator | None = None


class ControllerManager:
    """Owns the stop signal, the janitor and the kopf operator thread."""

    def __init__(
        self,
        registry: kopf.OperatorRegistry,
        janitor: StaleClusterJanitor,
        stop_event: threading.Event,
        *,
        namespace: str | None = None,
        components: ControllerComponents | None = None,
    ) -> None:
        self.registry = registry
        self.janitor = janitor
        self.components = components
        self.error: BaseException | None = None
        self._namespace = namespace
        self._stop = stop_event
        self._thread: threading.Thread | None = None
        self._log = logger.bind(entity="controller_manager")

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        self._log.info("manager_starting", namespace=self._namespace or "*")
        self.janitor.start()
        self._thread = threading.Thread(
            target=self._run_operator, name="ksit-operator", daemon=True
        )
        self._thread.start()

    def _run_operator(self) -> None:
        try:
            asyncio.run(
                kopf.operator(
                    registry=self.registry,
                    standalone=True,
                    clusterwide=self._namespace is None,
                    namespaces=[self._namespace] if self._namespace else (),
                    stop_flag=self._stop,
                )
            )
        except Exception as e:
            self.error = e
            self._log.exception("operator_failed")
        finally:
            # Wakes the caller blocked in wait()
            self._stop.set()

    def stop(self, timeout: float | None = 10.0) -> None:
        """Signal shutdown and wait for the operator to finish its handlers."""
        self._log.info("manager_stopping")
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self.janitor.stop(timeout)
        if self.components is not None:
            self.components.client.close()
        self._log.info("manager_stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is signalled. Returns True once stopped."""
        return self._stop.wait(timeout)


def build_components(settings: ControllerSettings) -> ControllerComponents:
    """Build the control-plane client and the shared services.

    Raises:
        KubernetesConnectionError: If no control-plane configuration is found.
        HelmBinaryNotFoundError: If the helm binary cannot be located.
        HelmError: If the helm binary does not run.
    """
    k8s = settings.kubernetes
    client = KubernetesClient.from_kubeconfig(
        k8s.kubeconfig,
        k8s.context,
        request_timeout=k8s.request_timeout,
        retry_attempts=k8s.retry_attempts,
    )
    helm = HelmClient(
        settings.helm.binary_path,
        repository_config=settings.helm.repository_config,
        repository_cache=settings.helm.repository_cache,
    )
    logger.info("helm_client_ready", version=helm.get_version())
    return ControllerComponents(
        client=client,
        resources=ResourceManager(client),
        registry=TargetRegistry(connectivity_timeout=settings.connectivity_timeout),
        inventory=ClusterInventory(),
        installers=InstallerFactory.with_helm(helm, install_timeout=settings.helm.install_timeout),
        checkers=HealthCheckerFactory.with_defaults(timeout=settings.health_check_timeout),
        metrics=ControllerMetrics(),
        mesh=MeshConfigurator(timeout=settings.health_check_timeout),
    )


def build_manager(
    settings: ControllerSettings,
    components: ControllerComponents | None = None,
) -> ControllerManager:
    """Wire reconcilers and the janitor into a manager around one kopf registry."""
    components = components or build_components(settings)
    stop_event = threading.Event()

    target_reconciler = TargetReconciler(
        components.resources,
        components.registry,
        components.inventory,
        components.metrics,
        resync_interval=settings.target_resync_interval,
        retry_interval=settings.target_retry_interval,
        connectivity_timeout=settings.connectivity_timeout,
    )
    integration_reconciler = IntegrationReconciler(
        components.resources,
        components.registry,
        components.installers,
        components.checkers,
        components.metrics,
        mesh=components.mesh,
        reconcile_interval=settings.reconcile_interval,
        cluster_concurrency=settings.cluster_concurrency,
    )

    registry = build_registry(
        IntegrationHandlers(
            integration_reconciler, stop_event, reconcile_timeout=settings.reconcile_timeout
        ),
        TargetHandlers(
            target_reconciler, stop_event, reconcile_timeout=settings.reconcile_timeout
        ),
        settings,
        components.client,
    )
    janitor = StaleClusterJanitor(
        components.inventory,
        max_age=settings.stale_cluster_max_age,
        period=settings.stale_cleanup_period,
    )
    return ControllerManager(
        registry,
        janitor,
        stop_event,
        namespace=settings.watch_namespace,
        components=components,
    )
