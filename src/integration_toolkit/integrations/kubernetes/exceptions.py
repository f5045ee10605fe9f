"""Errors raised while talking to a cluster API server or the helm binary."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceRef:
    """The object a failed request addressed."""

    kind: str
    name: str
    namespace: str | None = None

    @property
    def label(self) -> str:
        return f"{self.kind} '{self.name}'"

    @property
    def location(self) -> str:
        return f" in namespace '{self.namespace}'" if self.namespace else ""

    def __str__(self) -> str:
        return self.label + self.location


class KubernetesError(Exception):
    """Base error for cluster operations.

    Subclasses carry a default message and HTTP status so the client can
    build any of them from the same arguments.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status of the API response, when there was one.
        resource: The object the request addressed, if known.
    """

    default_message = "Kubernetes API error"
    default_status: int | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        resource: ResourceRef | None = None,
    ) -> None:
        self.resource = resource
        self.message = message or self.describe(resource)
        self.status_code = status_code if status_code is not None else self.default_status
        super().__init__(self.message)

    def describe(self, resource: ResourceRef | None) -> str:
        return self.default_message

    def __str__(self) -> str:
        text = self.message
        if self.status_code:
            text += f" (status: {self.status_code})"
        if self.resource is not None and self.resource.label not in self.message:
            text += f" [{self.resource}]"
        return text


class KubernetesConnectionError(KubernetesError):
    """The API server could not be reached (transport, TLS, no response)."""

    default_message = "Failed to connect to Kubernetes cluster"

    def __init__(
        self,
        message: str | None = None,
        *,
        original_error: Exception | None = None,
        resource: ResourceRef | None = None,
    ) -> None:
        super().__init__(message, resource=resource)
        self.original_error = original_error


class KubernetesAuthError(KubernetesError):
    """401 or 403 from the API server."""

    default_message = "Kubernetes authentication/authorization failed"
    default_status = 401


class KubernetesNotFoundError(KubernetesError):
    """404: the addressed object does not exist."""

    default_message = "Kubernetes resource not found"
    default_status = 404

    def describe(self, resource: ResourceRef | None) -> str:
        if resource is None:
            return self.default_message
        return f"{resource.label} not found{resource.location}"

    def __str__(self) -> str:
        return self.message


class KubernetesValidationError(KubernetesError):
    """400 or 422: the API rejected the request body."""

    default_message = "Invalid resource specification"
    default_status = 422


class KubernetesConflictError(KubernetesError):
    """409, usually a stale resourceVersion on update."""

    default_message = "Resource conflict"
    default_status = 409

    def describe(self, resource: ResourceRef | None) -> str:
        if resource is None:
            return self.default_message
        return f"{resource.label} was modified concurrently{resource.location}"


class InvalidCredentialError(KubernetesError):
    """Kubeconfig material that cannot be turned into a client configuration."""

    def __init__(
        self,
        message: str = "Invalid cluster credentials",
        cluster_name: str | None = None,
    ) -> None:
        if cluster_name:
            message = f"invalid credentials for cluster '{cluster_name}': {message}"
        super().__init__(message)
        self.cluster_name = cluster_name
