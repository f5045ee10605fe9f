"""Health profiles for the supported tools and the checker factory."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from integration_toolkit.models import IntegrationType, UnsupportedIntegrationTypeError
from integration_toolkit.services.health.base import (
    DEFAULT_HEALTH_CHECK_TIMEOUT,
    ClientFactory,
    HealthChecker,
    HealthProfile,
    WorkloadKind,
    WorkloadRef,
)

_D = WorkloadKind.DEPLOYMENT
_S = WorkloadKind.STATEFULSET

ARGOCD_PROFILE = HealthProfile(
    integration_type=IntegrationType.ARGOCD,
    workloads=(
        WorkloadRef(_D, "argocd-server"),
        WorkloadRef(_D, "argocd-repo-server"),
        WorkloadRef(_S, "argocd-application-controller"),
        WorkloadRef(_D, "argocd-redis", critical=False),
        WorkloadRef(_D, "argocd-dex-server", critical=False),
        WorkloadRef(_D, "argocd-applicationset-controller", critical=False),
        WorkloadRef(_D, "argocd-notifications-controller", critical=False),
    ),
    services=("argocd-server",),
)

FLUX_PROFILE = HealthProfile(
    integration_type=IntegrationType.FLUX,
    workloads=(
        WorkloadRef(_D, "source-controller"),
        WorkloadRef(_D, "kustomize-controller"),
        WorkloadRef(_D, "helm-controller", critical=False),
        WorkloadRef(_D, "notification-controller", critical=False),
    ),
    services=("source-controller",),
)

PROMETHEUS_PROFILE = HealthProfile(
    integration_type=IntegrationType.PROMETHEUS,
    workloads=(
        WorkloadRef(_D, "prometheus-kube-prometheus-operator"),
        WorkloadRef(_S, "prometheus-prometheus-kube-prometheus-prometheus"),
        WorkloadRef(_D, "prometheus-grafana", critical=False),
        WorkloadRef(_D, "prometheus-kube-state-metrics", critical=False),
    ),
    services=("prometheus-kube-prometheus-prometheus", "prometheus-operated"),
)

ISTIO_PROFILE = HealthProfile(
    integration_type=IntegrationType.ISTIO,
    workloads=(WorkloadRef(_D, "istiod"),),
    services=("istiod",),
)

DEFAULT_PROFILES: Mapping[IntegrationType, HealthProfile] = MappingProxyType(
    {
        profile.integration_type: profile
        for profile in (ARGOCD_PROFILE, FLUX_PROFILE, PROMETHEUS_PROFILE, ISTIO_PROFILE)
    }
)


class HealthCheckerFactory:
    """Registry of health checkers keyed by IntegrationType."""

    def __init__(self, checkers: Mapping[IntegrationType, HealthChecker] | None = None) -> None:
        self._checkers: dict[IntegrationType, HealthChecker] = dict(checkers or {})

    @classmethod
    def with_defaults(
        cls,
        client_factory: ClientFactory | None = None,
        *,
        timeout: int = DEFAULT_HEALTH_CHECK_TIMEOUT,
        profiles: Mapping[IntegrationType, HealthProfile] = DEFAULT_PROFILES,
    ) -> HealthCheckerFactory:
        """Build a factory with a checker for every built-in profile."""
        return cls(
            {
                integration_type: HealthChecker(profile, client_factory, timeout=timeout)
                for integration_type, profile in profiles.items()
            }
        )

    def register(self, checker: HealthChecker) -> None:
        """Add or replace the checker for its tool type."""
        self._checkers[checker.integration_type] = checker

    def get(self, integration_type: str) -> HealthChecker:
        """Return the checker for a tool type.

        Raises:
            UnsupportedIntegrationTypeError: If none is registered.
        """
        try:
            return self._checkers[IntegrationType(integration_type)]
        except (ValueError, KeyError) as e:
            raise UnsupportedIntegrationTypeError(integration_type) from e
