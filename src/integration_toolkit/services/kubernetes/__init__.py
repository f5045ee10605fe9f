"""Kubernetes resource managers."""

from integration_toolkit.services.kubernetes.base import K8sBaseManager
from integration_toolkit.services.kubernetes.resource_manager import ResourceManager

__all__ = ["K8sBaseManager", "ResourceManager"]
