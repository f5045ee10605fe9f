"""IntegrationTarget resource model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from integration_toolkit.models.base import Condition, ObjectKey, ObjectMeta, ResourceModel

INTEGRATION_TARGET_KIND = "IntegrationTarget"
INTEGRATION_TARGET_PLURAL = "integrationtargets"

DEFAULT_SECRET_KEY = "kubeconfig"
SECRET_NAME_SUFFIXES = ("-kubeconfig", "-secret")


class SecretReference(ResourceModel):
    name: str
    key: str = DEFAULT_SECRET_KEY


class IntegrationTargetSpec(ResourceModel):
    """Desired state of an IntegrationTarget."""

    cluster_name: str = ""
    namespace: str = ""
    secret_ref: SecretReference | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class IntegrationTargetStatus(ResourceModel):
    """Observed state of an IntegrationTarget."""

    ready: bool = False
    message: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int | None = None
    last_sync_time: datetime | None = None


class IntegrationTarget(ResourceModel):
    """An IntegrationTarget custom object."""

    metadata: ObjectMeta
    spec: IntegrationTargetSpec = Field(default_factory=IntegrationTargetSpec)
    status: IntegrationTargetStatus = Field(default_factory=IntegrationTargetStatus)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> IntegrationTarget:
        """Create from a ``CustomObjectsApi`` response dict."""
        data = {k: v for k, v in obj.items() if v is not None}
        return cls.model_validate(data)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def cluster_name(self) -> str:
        """Registry name of the cluster; the resource name when unset."""
        return self.spec.cluster_name or self.metadata.name

    def secret_candidates(self) -> list[SecretReference]:
        """Secrets to try, in order, for this target's kubeconfig."""
        if self.spec.secret_ref is not None:
            return [self.spec.secret_ref]
        return [
            SecretReference(name=f"{self.cluster_name}{suffix}") for suffix in SECRET_NAME_SUFFIXES
        ]
