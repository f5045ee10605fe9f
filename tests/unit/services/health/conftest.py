"""Shared fixtures for health checker tests."""

from __future__ import annotations

from collections.abc import Callable
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest

from integration_toolkit.integrations.kubernetes.client import KubernetesClient
from integration_toolkit.services.cluster.registry import ConnectionDescriptor, parse_credentials


def _not_found() -> Exception:
    from kubernetes.client import ApiException

    return ApiException(status=404)


def build_cluster_client(
    *,
    namespaces: tuple[str, ...] = (),
    deployments: dict[str, int] | None = None,
    statefulsets: dict[str, int] | None = None,
    endpoints: dict[str, int] | None = None,
    running_pods: int = 1,
) -> MagicMock:
    """Mock a remote cluster's API.

    ``deployments`` and ``statefulsets`` map workload names to ready
    replica counts; ``endpoints`` maps service names to address counts.
    Anything not listed reads as 404.
    """
    deployments = deployments or {}
    statefulsets = statefulsets or {}
    endpoints = endpoints or {}

    client = MagicMock()
    client.translate_api_exception.side_effect = KubernetesClient.translate_api_exception
    client.make_retry_decorator.return_value = lambda f: f

    def read_namespace(name: str, **_: Any) -> Any:
        if name not in namespaces:
            raise _not_found()
        return SimpleNamespace(metadata=SimpleNamespace(name=name))

    def read_deployment(name: str, namespace: str, **_: Any) -> Any:
        if name not in deployments:
            raise _not_found()
        return SimpleNamespace(status=SimpleNamespace(available_replicas=deployments[name]))

    def read_statefulset(name: str, namespace: str, **_: Any) -> Any:
        if name not in statefulsets:
            raise _not_found()
        return SimpleNamespace(status=SimpleNamespace(ready_replicas=statefulsets[name]))

    def read_endpoints(name: str, namespace: str, **_: Any) -> Any:
        if name not in endpoints:
            raise _not_found()
        addresses = [SimpleNamespace(ip=f"10.0.0.{i}") for i in range(endpoints[name])]
        return SimpleNamespace(subsets=[SimpleNamespace(addresses=addresses)])

    client.core_v1.read_namespace.side_effect = read_namespace
    client.apps_v1.read_namespaced_deployment.side_effect = read_deployment
    client.apps_v1.read_namespaced_stateful_set.side_effect = read_statefulset
    client.core_v1.read_namespaced_endpoints.side_effect = read_endpoints
    client.core_v1.list_namespaced_pod.return_value = SimpleNamespace(
        items=[SimpleNamespace()] * running_pods
    )
    return client


@pytest.fixture
def cluster_client_factory() -> Callable[..., MagicMock]:
    """Build a mock remote cluster client."""
    return build_cluster_client


@pytest.fixture
def descriptor(kubeconfig_bytes: bytes) -> ConnectionDescriptor:
    """Descriptor for cluster edge-1 in namespace platform."""
    return parse_credentials("edge-1", "platform", kubeconfig_bytes)
