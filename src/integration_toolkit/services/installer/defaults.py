"""Default Helm parameters per tool type.

Explicit ``autoInstall.helmConfig`` fields on an Integration override
these field by field; value overrides are merged key by key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from integration_toolkit.models import IntegrationType

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class HelmDefaults:
    """Chart coordinates used when an Integration does not specify them."""

    repository: str
    chart: str
    version: str
    release_name: str
    values: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


DEFAULT_HELM_CONFIGS: Mapping[IntegrationType, HelmDefaults] = MappingProxyType(
    {
        IntegrationType.ARGOCD: HelmDefaults(
            repository="https://argoproj.github.io/argo-helm",
            chart="argo-cd",
            version="5.51.6",
            release_name="argocd",
            values=MappingProxyType(
                {
                    "fullnameOverride": "argocd",
                    "server.service.type": "ClusterIP",
                    "server.insecure": "true",
                }
            ),
        ),
        IntegrationType.FLUX: HelmDefaults(
            repository="https://fluxcd-community.github.io/helm-charts",
            chart="flux2",
            version="2.12.2",
            release_name="flux",
            values=MappingProxyType(
                {
                    "imageAutomationController.create": "false",
                    "imageReflectionController.create": "false",
                }
            ),
        ),
        IntegrationType.PROMETHEUS: HelmDefaults(
            repository="https://prometheus-community.github.io/helm-charts",
            chart="kube-prometheus-stack",
            version="55.5.0",
            release_name="prometheus",
            values=MappingProxyType(
                {
                    "prometheus.prometheusSpec.retention": "7d",
                    "grafana.enabled": "true",
                }
            ),
        ),
        IntegrationType.ISTIO: HelmDefaults(
            repository="https://istio-release.storage.googleapis.com/charts",
            chart="istiod",
            version="1.20.2",
            release_name="istio",
            values=MappingProxyType(
                {
                    "global.proxy.resources.requests.cpu": "10m",
                    "global.proxy.resources.requests.memory": "128Mi",
                }
            ),
        ),
    }
)
