"""Shared fixtures for controller tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import MagicMock

import pytest

from integration_toolkit.integrations.kubernetes.client import KubernetesClient
from integration_toolkit.models import (
    FINALIZER,
    Integration,
    IntegrationTarget,
    IntegrationType,
    ObjectKey,
)
from integration_toolkit.observability.metrics import ControllerMetrics
from integration_toolkit.services.cluster.inventory import ClusterInventory
from integration_toolkit.services.cluster.registry import TargetRegistry
from integration_toolkit.services.health import (
    ClusterHealthResult,
    HealthChecker,
    HealthCheckerFactory,
    HealthReason,
)
from integration_toolkit.services.installer import InstallAction, Installer, InstallerFactory


def make_integration(
    name: str = "argocd",
    namespace: str = "platform",
    *,
    integration_type: str = "argocd",
    clusters: Iterable[str] = ("edge-1",),
    enabled: bool = True,
    auto_install: bool = False,
    install_method: str = "helm",
    finalizers: Iterable[str] = (FINALIZER,),
    deleting: bool = False,
    generation: int = 1,
    config: dict[str, str] | None = None,
    status: dict[str, Any] | None = None,
) -> Integration:
    """Build an Integration the way the API server would return it."""
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "generation": generation,
        "finalizers": list(finalizers),
    }
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    spec: dict[str, Any] = {
        "type": integration_type,
        "enabled": enabled,
        "targetClusters": list(clusters),
        "config": config or {},
    }
    if auto_install:
        spec["autoInstall"] = {"enabled": True, "method": install_method}
    return Integration.from_k8s_object({"metadata": metadata, "spec": spec, "status": status})


def make_target(
    name: str = "edge-1",
    namespace: str = "platform",
    *,
    cluster_name: str = "",
    secret_ref: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    generation: int = 1,
) -> IntegrationTarget:
    """Build an IntegrationTarget."""
    metadata: dict[str, Any] = {"name": name, "namespace": namespace, "generation": generation}
    spec: dict[str, Any] = {"clusterName": cluster_name, "labels": labels or {}}
    if secret_ref is not None:
        spec["secretRef"] = secret_ref
    return IntegrationTarget.from_k8s_object({"metadata": metadata, "spec": spec})


class FakeResources:
    """In-memory stand-in for ResourceManager.

    Status writes are recorded as deep copies and applied to the stored
    objects, which tests hand to reconcilers the way kopf would.
    """

    def __init__(self) -> None:
        self.integrations: dict[ObjectKey, Integration] = {}
        self.targets: dict[ObjectKey, IntegrationTarget] = {}
        self.secrets: dict[tuple[str, str], dict[str, bytes]] = {}
        self.integration_writes: list[Integration] = []
        self.target_writes: list[IntegrationTarget] = []

    def put_integration(self, integration: Integration) -> Integration:
        self.integrations[integration.key] = integration
        return integration

    def put_target(self, target: IntegrationTarget) -> IntegrationTarget:
        self.targets[target.key] = target
        return target

    def put_secret(self, name: str, namespace: str, data: dict[str, bytes]) -> None:
        self.secrets[(namespace, name)] = data

    def update_integration_status(self, integration: Integration) -> None:
        self.integration_writes.append(integration.model_copy(deep=True))
        stored = self.integrations.get(integration.key)
        if stored is not None:
            stored.status = integration.status.model_copy(deep=True)

    def update_target_status(self, target: IntegrationTarget) -> None:
        self.target_writes.append(target.model_copy(deep=True))
        stored = self.targets.get(target.key)
        if stored is not None:
            stored.status = target.status.model_copy(deep=True)

    def get_secret_data(self, name: str, namespace: str | None = None) -> dict[str, bytes] | None:
        return self.secrets.get((namespace or "default", name))


def health_result(
    cluster: str, reason: HealthReason = HealthReason.HEALTHY, message: str = ""
) -> ClusterHealthResult:
    return ClusterHealthResult(
        cluster=cluster,
        healthy=reason is HealthReason.HEALTHY,
        reason=reason,
        message=message,
    )


@pytest.fixture
def resources() -> FakeResources:
    return FakeResources()


@pytest.fixture
def metrics() -> ControllerMetrics:
    return ControllerMetrics()


@pytest.fixture
def inventory() -> ClusterInventory:
    return ClusterInventory()


@pytest.fixture
def remote_client() -> MagicMock:
    """Client handed out by the registry for connectivity probes."""
    client = MagicMock()
    client.translate_api_exception.side_effect = KubernetesClient.translate_api_exception
    client.get_cluster_version.return_value = "v1.29"
    return client


@pytest.fixture
def registry(remote_client: MagicMock) -> TargetRegistry:
    return TargetRegistry(client_factory=lambda d: remote_client, connectivity_timeout=5)


@pytest.fixture
def register(registry: TargetRegistry, kubeconfig_bytes: bytes) -> Callable[..., None]:
    """Register clusters in the registry under a namespace."""

    def _register(*clusters: str, namespace: str = "platform") -> None:
        for cluster in clusters:
            registry.add_or_update(cluster, namespace, kubeconfig_bytes)

    return _register


@pytest.fixture
def installer() -> MagicMock:
    """Installer mock reporting nothing installed."""
    mock = MagicMock(spec=Installer)
    mock.release_name.return_value = "argocd"
    mock.is_installed.return_value = False
    mock.install.return_value = InstallAction.INSTALLED
    return mock


@pytest.fixture
def installers(installer: MagicMock) -> InstallerFactory:
    return InstallerFactory({IntegrationType.ARGOCD: installer})


@pytest.fixture
def checker() -> MagicMock:
    """Checker mock reporting every cluster healthy."""
    mock = MagicMock(spec=HealthChecker)
    mock.check_cluster.side_effect = lambda ctx, descriptor, namespace: health_result(
        descriptor.cluster_name
    )
    return mock


@pytest.fixture
def checkers(checker: MagicMock) -> HealthCheckerFactory:
    return HealthCheckerFactory({IntegrationType.ARGOCD: checker})
