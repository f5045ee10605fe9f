"""Tool installers."""

from integration_toolkit.services.installer.base import (
    InstallAction,
    Installer,
    InstallerError,
    InstallStep,
)
from integration_toolkit.services.installer.defaults import DEFAULT_HELM_CONFIGS, HelmDefaults
from integration_toolkit.services.installer.factory import InstallerFactory
from integration_toolkit.services.installer.helm import (
    HelmInstaller,
    HelmParams,
    kubeconfig_file,
    repo_name_from_url,
)

__all__ = [
    "DEFAULT_HELM_CONFIGS",
    "HelmDefaults",
    "HelmInstaller",
    "HelmParams",
    "InstallAction",
    "InstallStep",
    "Installer",
    "InstallerError",
    "InstallerFactory",
    "kubeconfig_file",
    "repo_name_from_url",
]
