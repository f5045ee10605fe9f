"""Typed models for Kubernetes integration results."""

from integration_toolkit.integrations.kubernetes.models.helm import (
    HelmChart,
    HelmCommandResult,
    HelmRelease,
    HelmRepo,
)

__all__ = [
    "HelmChart",
    "HelmCommandResult",
    "HelmRelease",
    "HelmRepo",
]
