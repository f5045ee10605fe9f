"""Kubernetes integration - API client, Helm wrapper and exceptions."""

from integration_toolkit.integrations.kubernetes.client import KubernetesClient
from integration_toolkit.integrations.kubernetes.exceptions import (
    InvalidCredentialError,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)
from integration_toolkit.integrations.kubernetes.helm_client import (
    HelmBinaryNotFoundError,
    HelmCancelledError,
    HelmClient,
    HelmCommandError,
    HelmError,
)

__all__ = [
    "HelmBinaryNotFoundError",
    "HelmCancelledError",
    "HelmClient",
    "HelmCommandError",
    "HelmError",
    "InvalidCredentialError",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesValidationError",
]
