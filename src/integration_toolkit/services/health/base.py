"""Health checking of an installed tool on one remote cluster.

A check runs an ordered list of probes and stops at the first unmet one:

1. the tool namespace exists;
2. every critical workload exists and has at least one available replica
   (missing or unready companion workloads are only logged);
3. at least one of the tool's services has a backing endpoint address;
4. at least one pod in the namespace is Running.

Checkers never retry. The reconciler's requeue interval does that.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from integration_toolkit.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from integration_toolkit.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from integration_toolkit.core.context import OperationContext
    from integration_toolkit.integrations.kubernetes.client import KubernetesClient
    from integration_toolkit.models import IntegrationType
    from integration_toolkit.services.cluster.registry import ConnectionDescriptor

logger = structlog.get_logger()

DEFAULT_HEALTH_CHECK_TIMEOUT = 10


class HealthCheck(StrEnum):
    """Probe names, in execution order."""

    NAMESPACE = "namespace"
    WORKLOAD = "workload"
    ENDPOINTS = "endpoints"
    PODS = "pods"


class HealthReason(StrEnum):
    HEALTHY = "Healthy"
    HEALTH_CHECK_FAILED = "HealthCheckFailed"
    CONNECTION_FAILED = "ConnectionFailed"


class HealthCheckError(Exception):
    """A health probe found an unmet precondition."""

    def __init__(self, check: HealthCheck, message: str) -> None:
        self.check = check
        self.message = message
        super().__init__(f"{check}: {message}")


class WorkloadKind(StrEnum):
    DEPLOYMENT = "Deployment"
    STATEFULSET = "StatefulSet"


@dataclass(frozen=True)
class WorkloadRef:
    kind: WorkloadKind
    name: str
    critical: bool = True

    def describe(self) -> str:
        return f"{self.kind.lower()} '{self.name}'"


@dataclass(frozen=True)
class HealthProfile:
    """What "healthy" means for one tool type."""

    integration_type: IntegrationType
    workloads: tuple[WorkloadRef, ...]
    services: tuple[str, ...]


@dataclass(frozen=True)
class ClusterHealthResult:
    """Outcome of checking one cluster."""

    cluster: str
    healthy: bool
    reason: HealthReason
    message: str = ""
    check: HealthCheck | None = None


class WorkloadProbe(K8sBaseManager):
    """Read-only probes against one cluster's tool namespace."""

    _entity_name = "health_probe"

    def __init__(self, client: KubernetesClient, cluster: str) -> None:
        super().__init__(client)
        self._log = self._log.bind(cluster=cluster)

    def _read(
        self,
        fn: Callable[..., Any],
        kind: str,
        resource_name: str | None,
        resource_namespace: str,
        **api_kwargs: Any,
    ) -> Any | None:
        """Call a read API with ``api_kwargs``, returning None on 404.

        ``resource_name`` and ``resource_namespace`` only label errors; the
        API call itself takes its own ``name`` and ``namespace`` keywords.
        """
        try:
            try:
                return fn(**api_kwargs)
            except Exception as e:
                self._handle_api_error(e, kind, resource_name, resource_namespace)
        except KubernetesNotFoundError:
            return None

    def namespace_exists(self, namespace: str, timeout: float) -> None:
        found = self._read(
            self._client.core_v1.read_namespace,
            "Namespace",
            namespace,
            namespace,
            name=namespace,
            _request_timeout=timeout,
        )
        if found is None:
            raise HealthCheckError(HealthCheck.NAMESPACE, f"namespace '{namespace}' not found")

    def workload_ready(self, ref: WorkloadRef, namespace: str, timeout: float) -> None:
        if ref.kind is WorkloadKind.DEPLOYMENT:
            read = self._client.apps_v1.read_namespaced_deployment
        else:
            read = self._client.apps_v1.read_namespaced_stateful_set
        obj = self._read(
            read,
            ref.kind.value,
            ref.name,
            namespace,
            name=ref.name,
            namespace=namespace,
            _request_timeout=timeout,
        )

        if obj is None:
            if not ref.critical:
                self._log.info("optional_workload_missing", workload=ref.name, namespace=namespace)
                return
            raise HealthCheckError(
                HealthCheck.WORKLOAD,
                f"{ref.describe()} not found in namespace '{namespace}'",
            )

        status = obj.status
        if ref.kind is WorkloadKind.DEPLOYMENT:
            ready = (status.available_replicas or 0) if status else 0
        else:
            ready = (status.ready_replicas or 0) if status else 0

        if ready < 1:
            if not ref.critical:
                self._log.warning("optional_workload_unready", workload=ref.name, namespace=namespace)
                return
            raise HealthCheckError(
                HealthCheck.WORKLOAD,
                f"{ref.describe()} has no available replicas in namespace '{namespace}'",
            )

    def endpoint_addresses(self, service: str, namespace: str, timeout: float) -> int:
        endpoints = self._read(
            self._client.core_v1.read_namespaced_endpoints,
            "Endpoints",
            service,
            namespace,
            name=service,
            namespace=namespace,
            _request_timeout=timeout,
        )
        if endpoints is None:
            return 0
        return sum(len(subset.addresses or []) for subset in endpoints.subsets or [])

    def has_running_pod(self, namespace: str, timeout: float) -> bool:
        pods = self._read(
            self._client.core_v1.list_namespaced_pod,
            "Pod",
            None,
            namespace,
            namespace=namespace,
            field_selector="status.phase=Running",
            limit=1,
            _request_timeout=timeout,
        )
        return bool(pods is not None and pods.items)


ClientFactory = Callable[["ConnectionDescriptor"], "KubernetesClient"]


class HealthChecker:
    """Checks one tool type against a cluster's connection descriptor."""

    def __init__(
        self,
        profile: HealthProfile,
        client_factory: ClientFactory | None = None,
        *,
        timeout: int = DEFAULT_HEALTH_CHECK_TIMEOUT,
    ) -> None:
        """Initialize the checker.

        Args:
            profile: Workloads and services that define health for the tool.
            client_factory: Builds a client for a descriptor; defaults to
                ``ConnectionDescriptor.new_client``.
            timeout: Seconds allowed per remote read.
        """
        self.profile = profile
        self._timeout = timeout
        self._client_factory = client_factory or (
            lambda d: d.new_client(request_timeout=timeout)
        )
        self._log = logger.bind(entity="health_checker", type=profile.integration_type.value)

    @property
    def integration_type(self) -> IntegrationType:
        return self.profile.integration_type

    def check(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        namespace: str,
    ) -> None:
        """Run the probes in order, failing on the first unmet one.

        Raises:
            HealthCheckError: If a probe fails.
            KubernetesError: If the cluster cannot be read.
            OperationCancelledError: If ``ctx`` is cancelled between probes.
        """
        client = self._client_factory(descriptor)
        probe = WorkloadProbe(client, descriptor.cluster_name)
        try:
            ctx.check()
            probe.namespace_exists(namespace, ctx.remaining(self._timeout))

            for ref in self.profile.workloads:
                ctx.check()
                probe.workload_ready(ref, namespace, ctx.remaining(self._timeout))

            ctx.check()
            if self.profile.services:
                addresses = 0
                for service in self.profile.services:
                    addresses = probe.endpoint_addresses(
                        service, namespace, ctx.remaining(self._timeout)
                    )
                    if addresses:
                        break
                if not addresses:
                    names = ", ".join(f"'{s}'" for s in self.profile.services)
                    raise HealthCheckError(
                        HealthCheck.ENDPOINTS,
                        f"service {names} has no ready endpoint addresses in namespace '{namespace}'",
                    )

            ctx.check()
            if not probe.has_running_pod(namespace, ctx.remaining(self._timeout)):
                raise HealthCheckError(
                    HealthCheck.PODS, f"no running pods in namespace '{namespace}'"
                )
        finally:
            client.close()

    def check_cluster(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        namespace: str,
    ) -> ClusterHealthResult:
        """Run ``check`` and fold the outcome into a result.

        Cancellation still propagates.
        """
        cluster = descriptor.cluster_name
        try:
            self.check(ctx, descriptor, namespace)
        except HealthCheckError as e:
            self._log.info("cluster_unhealthy", cluster=cluster, check=e.check.value, detail=e.message)
            return ClusterHealthResult(
                cluster=cluster,
                healthy=False,
                reason=HealthReason.HEALTH_CHECK_FAILED,
                message=str(e),
                check=e.check,
            )
        except KubernetesError as e:
            self._log.warning("cluster_unreachable", cluster=cluster, error=str(e))
            return ClusterHealthResult(
                cluster=cluster,
                healthy=False,
                reason=HealthReason.CONNECTION_FAILED,
                message=str(e),
            )

        self._log.debug("cluster_healthy", cluster=cluster, namespace=namespace)
        return ClusterHealthResult(cluster=cluster, healthy=True, reason=HealthReason.HEALTHY)
