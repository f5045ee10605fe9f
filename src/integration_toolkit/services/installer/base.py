"""Installer capability shared by every tool type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from integration_toolkit.core.context import OperationContext
    from integration_toolkit.models import Integration, IntegrationType
    from integration_toolkit.services.cluster.registry import ConnectionDescriptor


class InstallStep(StrEnum):
    """Install protocol steps, named in failure messages."""

    CONFIGURATION = "configuration"
    KUBECONFIG = "kubeconfig"
    REPOSITORY_ADD = "repository add"
    INDEX_FETCH = "index fetch"
    CHART_RESOLUTION = "chart resolution"
    RELEASE_LIST = "release list"
    INSTALL = "install"
    UPGRADE = "upgrade"
    UNINSTALL = "uninstall"
    ROLLBACK = "rollback"


class InstallAction(StrEnum):
    INSTALLED = "installed"
    UPGRADED = "upgraded"


class InstallerError(Exception):
    """An install protocol step failed.

    Attributes:
        step: The step that failed.
        message: Underlying failure detail.
    """

    def __init__(self, step: InstallStep, message: str) -> None:
        self.step = step
        self.message = message
        super().__init__(f"{step} failed: {message}")


class Installer(ABC):
    """Makes one tool type present or absent on a cluster.

    Implementations must be idempotent: ``install`` on a cluster that
    already has the release upgrades it in place, and ``uninstall`` of an
    absent release succeeds.
    """

    integration_type: IntegrationType

    @abstractmethod
    def is_installed(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> bool:
        """Report whether the tool's release exists. Has no side effects."""

    @abstractmethod
    def install(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> InstallAction:
        """Install the tool, or upgrade it if a release already exists."""

    @abstractmethod
    def uninstall(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> bool:
        """Remove the tool's release.

        Returns:
            True if a release was removed, False if none existed.
        """

    @abstractmethod
    def release_name(self, integration: Integration) -> str:
        """Name of the release this installer manages for ``integration``."""
