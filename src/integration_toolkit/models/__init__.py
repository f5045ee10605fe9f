"""Models of the ksit.io custom resources."""

from integration_toolkit.models.base import (
    API_GROUP,
    API_VERSION,
    FINALIZER,
    Condition,
    ConditionStatus,
    ObjectKey,
    ObjectMeta,
    find_condition,
    set_status_condition,
    utcnow,
)
from integration_toolkit.models.integration import (
    INTEGRATION_PLURAL,
    AutoInstallSpec,
    ClusterStatus,
    HelmConfig,
    InstallMethod,
    Integration,
    IntegrationPhase,
    IntegrationSpec,
    IntegrationStatus,
    IntegrationType,
    UnsupportedIntegrationTypeError,
    validate_integration_spec,
)
from integration_toolkit.models.target import (
    INTEGRATION_TARGET_PLURAL,
    IntegrationTarget,
    IntegrationTargetSpec,
    IntegrationTargetStatus,
    SecretReference,
)

__all__ = [
    "API_GROUP",
    "API_VERSION",
    "FINALIZER",
    "INTEGRATION_PLURAL",
    "INTEGRATION_TARGET_PLURAL",
    "AutoInstallSpec",
    "ClusterStatus",
    "Condition",
    "ConditionStatus",
    "HelmConfig",
    "InstallMethod",
    "Integration",
    "IntegrationPhase",
    "IntegrationSpec",
    "IntegrationStatus",
    "IntegrationTarget",
    "IntegrationTargetSpec",
    "IntegrationTargetStatus",
    "IntegrationType",
    "ObjectKey",
    "ObjectMeta",
    "SecretReference",
    "UnsupportedIntegrationTypeError",
    "find_condition",
    "set_status_condition",
    "utcnow",
]
