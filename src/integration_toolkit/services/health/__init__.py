"""Tool health checking."""

from integration_toolkit.services.health.base import (
    ClusterHealthResult,
    HealthCheck,
    HealthChecker,
    HealthCheckError,
    HealthProfile,
    HealthReason,
    WorkloadKind,
    WorkloadRef,
)
from integration_toolkit.services.health.checkers import DEFAULT_PROFILES, HealthCheckerFactory

__all__ = [
    "DEFAULT_PROFILES",
    "ClusterHealthResult",
    "HealthCheck",
    "HealthCheckError",
    "HealthChecker",
    "HealthCheckerFactory",
    "HealthProfile",
    "HealthReason",
    "WorkloadKind",
    "WorkloadRef",
]
