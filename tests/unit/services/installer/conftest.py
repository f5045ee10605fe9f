"""Shared fixtures for installer tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from integration_toolkit.integrations.kubernetes.helm_client import HelmCommandError
from integration_toolkit.integrations.kubernetes.models.helm import (
    HelmChart,
    HelmCommandResult,
    HelmRelease,
    HelmRepo,
)
from integration_toolkit.models import Integration
from integration_toolkit.services.cluster.registry import ConnectionDescriptor, parse_credentials


class FakeHelm:
    """In-memory stand-in for HelmClient that tracks repos and releases.

    Records every call as ``(method, args, kwargs)`` and the kubeconfig
    files it was handed, so tests can assert on ordering and cleanup.
    """

    def __init__(self) -> None:
        self.repos: dict[str, str] = {}
        self.indexed: set[str] = set()
        self.charts: set[str] = set()
        self.releases: dict[tuple[str, str], HelmRelease] = {}
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.kubeconfigs: list[str] = []
        self.fail: dict[str, str] = {}

    def _record(self, method: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((method, args, kwargs))
        if kwargs.get("kubeconfig"):
            path = kwargs["kubeconfig"]
            assert Path(path).exists()
            self.kubeconfigs.append(path)
        if method in self.fail:
            raise HelmCommandError(message=f"Helm command failed: {self.fail[method]}")

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    def repo_list(self) -> list[HelmRepo]:
        self._record("repo_list")
        return [HelmRepo(name=n, url=u) for n, u in self.repos.items()]

    def repo_add(self, name: str, url: str, **kwargs: Any) -> HelmCommandResult:
        self._record("repo_add", name, url, **kwargs)
        self.repos[name] = url
        return HelmCommandResult(args=("repo", "add", name, url))

    def repo_update(self, names: list[str] | None = None, **kwargs: Any) -> HelmCommandResult:
        self._record("repo_update", names, **kwargs)
        self.indexed.update(names or self.repos)
        return HelmCommandResult(args=("repo", "update", *(names or [])))

    def show_chart(self, chart: str, **kwargs: Any) -> HelmChart:
        self._record("show_chart", chart, **kwargs)
        repo = chart.split("/", 1)[0]
        if repo not in self.indexed or (self.charts and chart not in self.charts):
            raise HelmCommandError(message=f"Helm command failed: chart {chart} not found")
        return HelmChart(name=chart.split("/")[-1], version=kwargs.get("version") or "")

    def list_releases(self, **kwargs: Any) -> list[HelmRelease]:
        self._record("list_releases", **kwargs)
        namespace = kwargs.get("namespace") or ""
        return [r for (ns, _), r in self.releases.items() if ns == namespace]

    def install(self, release_name: str, chart: str, **kwargs: Any) -> HelmCommandResult:
        self._record("install", release_name, chart, **kwargs)
        key = (kwargs.get("namespace") or "", release_name)
        if key in self.releases:
            raise HelmCommandError(
                message="Helm command failed: cannot re-use a name that is still in use"
            )
        self.releases[key] = _release(release_name, key[0], 1, chart)
        return HelmCommandResult(args=("install", release_name, chart))

    def upgrade(self, release_name: str, chart: str, **kwargs: Any) -> HelmCommandResult:
        self._record("upgrade", release_name, chart, **kwargs)
        key = (kwargs.get("namespace") or "", release_name)
        previous = self.releases[key]
        self.releases[key] = _release(release_name, key[0], previous.revision + 1, chart)
        return HelmCommandResult(args=("upgrade", release_name, chart))

    def uninstall(self, release_name: str, **kwargs: Any) -> HelmCommandResult:
        self._record("uninstall", release_name, **kwargs)
        self.releases.pop((kwargs.get("namespace") or "", release_name), None)
        return HelmCommandResult(args=("uninstall", release_name))

    def rollback(
        self, release_name: str, revision: int | None = None, **kwargs: Any
    ) -> HelmCommandResult:
        self._record("rollback", release_name, revision, **kwargs)
        key = (kwargs.get("namespace") or "", release_name)
        previous = self.releases[key]
        self.releases[key] = _release(release_name, key[0], previous.revision + 1, previous.chart)
        return HelmCommandResult(args=("rollback", release_name))


def _release(
    name: str, namespace: str, revision: int, chart: str, status: str = "deployed"
) -> HelmRelease:
    return HelmRelease(
        name=name, namespace=namespace, revision=revision, status=status, chart=chart
    )


@pytest.fixture
def fake_helm() -> FakeHelm:
    """A fresh in-memory helm."""
    return FakeHelm()


@pytest.fixture
def descriptor(kubeconfig_bytes: bytes) -> ConnectionDescriptor:
    """Descriptor for cluster edge-1 in namespace platform."""
    return parse_credentials("edge-1", "platform", kubeconfig_bytes)


@pytest.fixture
def integration_factory() -> Callable[..., Integration]:
    """Build Integrations with optional auto-install settings."""

    def _make(
        integration_type: str = "argocd",
        helm_config: dict[str, Any] | None = None,
        method: str = "helm",
        config: dict[str, str] | None = None,
    ) -> Integration:
        auto_install: dict[str, Any] = {"enabled": True, "method": method}
        if helm_config is not None:
            auto_install["helmConfig"] = helm_config
        return Integration.from_k8s_object(
            {
                "metadata": {"name": integration_type, "namespace": "platform", "generation": 1},
                "spec": {
                    "type": integration_type,
                    "targetClusters": ["edge-1"],
                    "config": config or {},
                    "autoInstall": auto_install,
                },
            }
        )

    return _make
