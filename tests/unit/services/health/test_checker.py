"""Unit tests for HealthChecker and the checker factory."""

from __future__ import annotations

import threading
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from integration_toolkit.core.context import OperationCancelledError, OperationContext
from integration_toolkit.models import IntegrationType, UnsupportedIntegrationTypeError
from integration_toolkit.services.cluster.registry import ConnectionDescriptor
from integration_toolkit.services.health import (
    DEFAULT_PROFILES,
    HealthCheck,
    HealthChecker,
    HealthCheckerFactory,
    HealthCheckError,
    HealthProfile,
    HealthReason,
)
from integration_toolkit.services.health.checkers import ARGOCD_PROFILE, PROMETHEUS_PROFILE


def _checker(client: MagicMock, profile: HealthProfile = ARGOCD_PROFILE) -> HealthChecker:
    return HealthChecker(profile, client_factory=lambda d: client, timeout=5)


def _healthy_argocd(factory: Callable[..., MagicMock], **overrides: object) -> MagicMock:
    spec: dict[str, object] = {
        "namespaces": ("argocd",),
        "deployments": {"argocd-server": 1, "argocd-repo-server": 1},
        "statefulsets": {"argocd-application-controller": 1},
        "endpoints": {"argocd-server": 2},
    }
    spec.update(overrides)
    return factory(**spec)


# ===========================================================================
# Probe sequence
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestHealthChecker:
    """Tests for the ordered probe sequence."""

    def test_healthy(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """All probes passing reports healthy and closes the client."""
        client = _healthy_argocd(cluster_client_factory)

        result = _checker(client).check_cluster(OperationContext(), descriptor, "argocd")

        assert result.healthy
        assert result.reason is HealthReason.HEALTHY
        client.close.assert_called_once()

    def test_missing_namespace_fails_first(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """A missing namespace stops the check before workloads are read."""
        client = _healthy_argocd(cluster_client_factory, namespaces=())

        with pytest.raises(HealthCheckError) as exc_info:
            _checker(client).check(OperationContext(), descriptor, "argocd")

        assert exc_info.value.check is HealthCheck.NAMESPACE
        client.apps_v1.read_namespaced_deployment.assert_not_called()

    def test_unready_critical_deployment(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """Zero available replicas on a critical deployment fails with its name."""
        client = _healthy_argocd(
            cluster_client_factory, deployments={"argocd-server": 0, "argocd-repo-server": 1}
        )

        result = _checker(client).check_cluster(OperationContext(), descriptor, "argocd")

        assert not result.healthy
        assert result.reason is HealthReason.HEALTH_CHECK_FAILED
        assert result.check is HealthCheck.WORKLOAD
        assert "argocd-server" in result.message
        assert "no available replicas" in result.message

    def test_missing_critical_statefulset(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """A missing critical statefulset fails."""
        client = _healthy_argocd(cluster_client_factory, statefulsets={})

        with pytest.raises(HealthCheckError, match="statefulset 'argocd-application-controller' not found"):
            _checker(client).check(OperationContext(), descriptor, "argocd")

    def test_optional_workloads_do_not_fail(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """Companion workloads may be missing or unready."""
        client = _healthy_argocd(
            cluster_client_factory,
            deployments={"argocd-server": 1, "argocd-repo-server": 1, "argocd-redis": 0},
        )

        _checker(client).check(OperationContext(), descriptor, "argocd")

    def test_no_endpoints(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """A service without addresses fails the endpoints probe."""
        client = _healthy_argocd(cluster_client_factory, endpoints={"argocd-server": 0})

        with pytest.raises(HealthCheckError) as exc_info:
            _checker(client).check(OperationContext(), descriptor, "argocd")

        assert exc_info.value.check is HealthCheck.ENDPOINTS

    def test_any_listed_service_satisfies_endpoints(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """One of several candidate services having addresses is enough."""
        client = cluster_client_factory(
            namespaces=("monitoring",),
            deployments={"prometheus-kube-prometheus-operator": 1},
            statefulsets={"prometheus-prometheus-kube-prometheus-prometheus": 1},
            endpoints={"prometheus-operated": 1},
        )

        _checker(client, PROMETHEUS_PROFILE).check(OperationContext(), descriptor, "monitoring")

    def test_no_running_pods(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """No running pod fails the last probe."""
        client = _healthy_argocd(cluster_client_factory, running_pods=0)

        with pytest.raises(HealthCheckError, match="no running pods in namespace 'argocd'"):
            _checker(client).check(OperationContext(), descriptor, "argocd")

        kwargs = client.core_v1.list_namespaced_pod.call_args.kwargs
        assert kwargs["field_selector"] == "status.phase=Running"

    def test_unreachable_cluster(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """Transport failures report ConnectionFailed."""
        client = _healthy_argocd(cluster_client_factory)
        client.core_v1.read_namespace.side_effect = OSError("connection refused")

        result = _checker(client).check_cluster(OperationContext(), descriptor, "argocd")

        assert result.reason is HealthReason.CONNECTION_FAILED
        client.close.assert_called_once()

    def test_cancellation_propagates(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """A cancelled context is not folded into a result."""
        stop = threading.Event()
        stop.set()
        client = _healthy_argocd(cluster_client_factory)

        with pytest.raises(OperationCancelledError):
            _checker(client).check_cluster(OperationContext(stop), descriptor, "argocd")

        client.close.assert_called_once()

    def test_reads_use_timeout(
        self, cluster_client_factory: Callable[..., MagicMock], descriptor: ConnectionDescriptor
    ) -> None:
        """Every read carries the checker timeout."""
        client = _healthy_argocd(cluster_client_factory)

        _checker(client).check(OperationContext(), descriptor, "argocd")

        assert client.core_v1.read_namespace.call_args.kwargs["_request_timeout"] == 5


# ===========================================================================
# Factory
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestHealthCheckerFactory:
    """Tests for checker dispatch."""

    def test_defaults_cover_every_type(self) -> None:
        """Each tool type has a checker with its profile."""
        factory = HealthCheckerFactory.with_defaults(timeout=3)

        for integration_type in IntegrationType:
            checker = factory.get(integration_type.value)
            assert checker.profile is DEFAULT_PROFILES[integration_type]

    def test_unknown_type(self) -> None:
        """Unknown types raise UnsupportedIntegrationTypeError."""
        with pytest.raises(UnsupportedIntegrationTypeError):
            HealthCheckerFactory.with_defaults().get("linkerd")

    def test_register_replaces(self) -> None:
        """register swaps the checker for a type."""
        factory = HealthCheckerFactory()
        checker = HealthChecker(ARGOCD_PROFILE)

        factory.register(checker)

        assert factory.get("argocd") is checker
