"""Remote cluster connection management."""

from integration_toolkit.services.cluster.inventory import (
    ClusterInfo,
    ClusterInventory,
    StaleClusterJanitor,
)
from integration_toolkit.services.cluster.registry import (
    ConnectionDescriptor,
    NotRegisteredError,
    TargetRegistry,
    parse_credentials,
)

__all__ = [
    "ClusterInfo",
    "ClusterInventory",
    "ConnectionDescriptor",
    "NotRegisteredError",
    "StaleClusterJanitor",
    "TargetRegistry",
    "parse_credentials",
]
