"""Integration resource model and spec validation."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field

from integration_toolkit.models.base import (
    Condition,
    ObjectKey,
    ObjectMeta,
    ResourceModel,
)

INTEGRATION_KIND = "Integration"
INTEGRATION_PLURAL = "integrations"

# DNS-1123 subdomain limit applied to integration names
MAX_NAME_LENGTH = 253


class IntegrationType(StrEnum):
    """Tools an Integration can install and monitor."""

    ARGOCD = "argocd"
    FLUX = "flux"
    PROMETHEUS = "prometheus"
    ISTIO = "istio"

    @property
    def default_namespace(self) -> str:
        """Namespace the tool is installed into when not overridden."""
        return _DEFAULT_NAMESPACES[self]


_DEFAULT_NAMESPACES = {
    IntegrationType.ARGOCD: "argocd",
    IntegrationType.FLUX: "flux-system",
    IntegrationType.PROMETHEUS: "monitoring",
    IntegrationType.ISTIO: "istio-system",
}


class UnsupportedIntegrationTypeError(ValueError):
    """Raised when no installer or checker exists for a type."""

    def __init__(self, integration_type: str) -> None:
        self.integration_type = integration_type
        super().__init__(f"unsupported integration type '{integration_type}'")


class IntegrationPhase(StrEnum):
    """Coarse lifecycle state of an Integration."""

    INITIALIZING = "Initializing"
    RUNNING = "Running"
    FAILED = "Failed"
    SUCCEEDED = "Succeeded"


class InstallMethod(StrEnum):
    HELM = "helm"


class HelmConfig(ResourceModel):
    """Explicit Helm parameters; empty fields fall back to per-tool defaults."""

    repository: str = ""
    chart: str = ""
    version: str = ""
    release_name: str = ""
    values: dict[str, str] = Field(default_factory=dict)


class AutoInstallSpec(ResourceModel):
    enabled: bool = False
    method: str = InstallMethod.HELM.value
    helm_config: HelmConfig | None = None


class IntegrationSpec(ResourceModel):
    """Desired state of an Integration."""

    type: str
    enabled: bool = True
    target_clusters: list[str] = Field(default_factory=list)
    config: dict[str, str] = Field(default_factory=dict)
    auto_install: AutoInstallSpec | None = None

    @property
    def auto_install_enabled(self) -> bool:
        return self.auto_install is not None and self.auto_install.enabled


class ClusterStatus(ResourceModel):
    """Outcome of the most recent reconcile for one target cluster."""

    name: str
    connected: bool = False
    installed: bool | None = None
    healthy: bool = False
    reason: str = ""
    message: str = ""
    last_seen: datetime | None = None


class IntegrationStatus(ResourceModel):
    """Observed state of an Integration."""

    phase: str = ""
    message: str = ""
    last_reconcile_time: datetime | None = None
    observed_generation: int | None = None
    conditions: list[Condition] = Field(default_factory=list)
    cluster_statuses: list[ClusterStatus] = Field(default_factory=list)


class Integration(ResourceModel):
    """An Integration custom object."""

    metadata: ObjectMeta
    spec: IntegrationSpec
    status: IntegrationStatus = Field(default_factory=IntegrationStatus)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Integration:
        """Create from a ``CustomObjectsApi`` response dict."""
        data = dict(obj)
        if data.get("status") is None:
            data.pop("status", None)
        return cls.model_validate(data)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    def effective_namespace(self, default: str) -> str:
        """Namespace the tool lives in on target clusters."""
        return self.spec.config.get("namespace") or default


def validate_integration_spec(name: str, spec: IntegrationSpec) -> list[str]:
    """Check an Integration for structural errors.

    Args:
        name: Resource name.
        spec: The spec to check.

    Returns:
        Human-readable problems; empty when the spec is valid.
    """
    errors: list[str] = []

    if len(name) > MAX_NAME_LENGTH:
        errors.append(f"name must be no more than {MAX_NAME_LENGTH} characters")

    valid_types = [t.value for t in IntegrationType]
    if spec.type not in valid_types:
        errors.append(
            f"unsupported integration type '{spec.type}', "
            f"must be one of: {', '.join(valid_types)}"
        )

    if not spec.target_clusters:
        errors.append("targetClusters must not be empty")

    seen: set[str] = set()
    for index, cluster in enumerate(spec.target_clusters):
        if not cluster:
            errors.append(f"targetClusters[{index}] must not be empty")
        elif cluster in seen:
            errors.append(f"targetClusters[{index}] duplicates cluster '{cluster}'")
        seen.add(cluster)

    if spec.auto_install is not None and spec.auto_install.enabled:
        methods = [m.value for m in InstallMethod]
        if spec.auto_install.method not in methods:
            errors.append(
                f"unsupported autoInstall.method '{spec.auto_install.method}', "
                f"must be one of: {', '.join(methods)}"
            )

    return errors
