"""Shared pieces of the ksit.io custom resource models.

Custom objects arrive from ``CustomObjectsApi`` as plain dicts with
camelCase keys. Models use snake_case attributes with camelCase aliases
so that ``model_validate`` accepts API payloads and
``model_dump(by_alias=True)`` produces them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

API_GROUP = "ksit.io"
API_VERSION = "v1alpha1"
FINALIZER = "ksit.io/finalizer"


def utcnow() -> datetime:
    """Current UTC time truncated to seconds, as the API server stores it."""
    return datetime.now(UTC).replace(microsecond=0)


class ObjectKey(NamedTuple):
    """Namespace/name identity of a namespaced resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ResourceModel(BaseModel):
    """Base for all resource sub-models."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_api(self) -> dict[str, Any]:
        """Serialize with API field names, omitting unset optionals."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ObjectMeta(ResourceModel):
    """The subset of ``metadata`` the controllers read."""

    name: str
    namespace: str = "default"
    uid: str | None = None
    generation: int = 0
    resource_version: str | None = None
    deletion_timestamp: str | None = None
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


class ConditionStatus(StrEnum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Condition(ResourceModel):
    """A status condition in the shape of ``metav1.Condition``."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    observed_generation: int | None = None
    last_transition_time: datetime | None = None


def find_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Return the condition of the given type, if present."""
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_status_condition(
    conditions: list[Condition],
    new: Condition,
    now: datetime | None = None,
) -> bool:
    """Insert or update a condition in place, keyed by type.

    ``last_transition_time`` only moves when the status value changes.

    Args:
        conditions: The list to modify.
        new: Desired condition.
        now: Transition timestamp, defaults to the current time.

    Returns:
        True if the list was modified.
    """
    now = now or utcnow()
    existing = find_condition(conditions, new.type)
    if existing is None:
        conditions.append(new.model_copy(update={"last_transition_time": now}))
        return True

    changed = False
    if existing.status != new.status:
        existing.status = new.status
        existing.last_transition_time = now
        changed = True
    for field in ("reason", "message", "observed_generation"):
        value = getattr(new, field)
        if getattr(existing, field) != value:
            setattr(existing, field, value)
            changed = True
    if existing.last_transition_time is None:
        existing.last_transition_time = now
        changed = True
    return changed
