"""Installer lookup by tool type, plus per-release install locks."""

from __future__ import annotations

import threading
import weakref
from collections.abc import Mapping
from typing import Any

import structlog

from integration_toolkit.integrations.kubernetes.helm_client import (
    HELM_TIMEOUT_SECONDS,
    HelmClient,
)
from integration_toolkit.models import IntegrationType, UnsupportedIntegrationTypeError
from integration_toolkit.services.installer.base import Installer
from integration_toolkit.services.installer.defaults import DEFAULT_HELM_CONFIGS, HelmDefaults
from integration_toolkit.services.installer.helm import HelmInstaller

logger = structlog.get_logger()


class ReleaseLock:
    """A mutex that, unlike ``threading.Lock``, can be weakly referenced."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> ReleaseLock:
        self._lock.acquire()
        return self

    def __exit__(self, *args: Any) -> None:
        self._lock.release()


class InstallerFactory:
    """Registry of installers keyed by IntegrationType.

    Also hands out one lock per (cluster, namespace, tool, release) so that
    no two install or uninstall calls overlap on the same release, even
    when clusters are processed in parallel or two Integrations name the
    same release. Locks are cached weakly and disappear once no caller
    holds one, so removed clusters and renamed releases leave nothing behind.
    """

    def __init__(self, installers: Mapping[IntegrationType, Installer] | None = None) -> None:
        self._installers: dict[IntegrationType, Installer] = dict(installers or {})
        self._locks: weakref.WeakValueDictionary[tuple[str, str, str, str], ReleaseLock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    @classmethod
    def with_helm(
        cls,
        helm: HelmClient,
        *,
        install_timeout: int = HELM_TIMEOUT_SECONDS,
        defaults: Mapping[IntegrationType, HelmDefaults] = DEFAULT_HELM_CONFIGS,
    ) -> InstallerFactory:
        """Build a factory with a HelmInstaller for every tool type."""
        repository_lock = threading.Lock()
        installers: dict[IntegrationType, Installer] = {
            integration_type: HelmInstaller(
                integration_type,
                helm,
                defaults[integration_type],
                install_timeout=install_timeout,
                repository_lock=repository_lock,
            )
            for integration_type in IntegrationType
        }
        return cls(installers)

    def register(self, integration_type: IntegrationType, installer: Installer) -> None:
        """Add or replace the installer for a tool type."""
        self._installers[integration_type] = installer
        logger.debug("installer_registered", type=integration_type.value)

    def get(self, integration_type: str) -> Installer:
        """Return the installer for a tool type.

        Raises:
            UnsupportedIntegrationTypeError: If none is registered.
        """
        try:
            return self._installers[IntegrationType(integration_type)]
        except (ValueError, KeyError) as e:
            raise UnsupportedIntegrationTypeError(integration_type) from e

    def release_lock(
        self,
        cluster_key: str,
        namespace: str,
        integration_type: str,
        release_name: str,
    ) -> ReleaseLock:
        """Lock guarding installs of one release on one cluster.

        Callers must keep the returned lock referenced while using it.
        """
        key = (cluster_key, namespace, integration_type, release_name)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = ReleaseLock()
            return lock
