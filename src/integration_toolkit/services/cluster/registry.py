"""Target Registry: cached connection descriptors for remote clusters.

The registry is a passive cache shared by the reconcilers. It stores what
it is told and never decides liveness itself. One lock guards one dict,
and no I/O happens while the lock is held. Credential parsing and
connectivity probes run outside the critical section.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from integration_toolkit.integrations.kubernetes.client import KubernetesClient
from integration_toolkit.integrations.kubernetes.exceptions import InvalidCredentialError
from integration_toolkit.models import utcnow

if TYPE_CHECKING:
    from kubernetes.client import Configuration

logger = structlog.get_logger()

DEFAULT_CONNECTIVITY_TIMEOUT = 10


class NotRegisteredError(LookupError):
    """Raised when no descriptor is registered for a cluster."""

    def __init__(self, cluster_name: str, namespace: str) -> None:
        self.cluster_name = cluster_name
        self.namespace = namespace
        self.message = (
            f"cluster '{cluster_name}' is not registered in namespace '{namespace}' "
            "(no ready IntegrationTarget)"
        )
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


def registry_key(cluster_name: str, namespace: str) -> str:
    """Key used for a (cluster, namespace) pair."""
    return f"{namespace}/{cluster_name}"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Resolved endpoint and credentials for one cluster.

    Instances are immutable snapshots. Credential rotation replaces the
    descriptor in the registry instead of mutating it, so holders of an
    older descriptor keep a consistent view for the rest of their call.
    """

    cluster_name: str
    namespace: str
    server: str
    kubeconfig: bytes = field(repr=False)
    configuration: Configuration = field(repr=False, compare=False)
    labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    registered_at: datetime = field(default_factory=utcnow, compare=False)

    @property
    def key(self) -> str:
        return registry_key(self.cluster_name, self.namespace)

    def new_client(
        self,
        *,
        request_timeout: int = DEFAULT_CONNECTIVITY_TIMEOUT,
        retry_attempts: int = 1,
    ) -> KubernetesClient:
        """Build a client for this cluster.

        The client gets its own copy of the configuration; callers must
        close it when done.
        """
        return KubernetesClient.from_configuration(
            copy.deepcopy(self.configuration),
            request_timeout=request_timeout,
            retry_attempts=retry_attempts,
            context=self.cluster_name,
        )


def parse_credentials(
    cluster_name: str,
    namespace: str,
    credential: bytes | str,
    labels: Mapping[str, str] | None = None,
) -> ConnectionDescriptor:
    """Parse serialized kubeconfig material into a ConnectionDescriptor.

    Raises:
        InvalidCredentialError: If the material is not a usable kubeconfig.
    """
    from kubernetes import config
    from kubernetes.client import Configuration
    from kubernetes.config import ConfigException

    raw = credential.encode() if isinstance(credential, str) else bytes(credential)
    if not raw.strip():
        raise InvalidCredentialError("kubeconfig is empty", cluster_name=cluster_name)

    try:
        document: Any = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise InvalidCredentialError(f"kubeconfig is not valid YAML: {e}", cluster_name) from e
    if not isinstance(document, dict):
        raise InvalidCredentialError("kubeconfig is not a mapping", cluster_name=cluster_name)

    configuration = Configuration()
    try:
        config.load_kube_config_from_dict(
            config_dict=document,
            client_configuration=configuration,
            persist_config=False,
        )
    except (ConfigException, KeyError, TypeError, ValueError) as e:
        raise InvalidCredentialError(str(e) or type(e).__name__, cluster_name=cluster_name) from e

    if not configuration.host:
        raise InvalidCredentialError("kubeconfig has no server", cluster_name=cluster_name)

    return ConnectionDescriptor(
        cluster_name=cluster_name,
        namespace=namespace,
        server=configuration.host,
        kubeconfig=raw,
        configuration=configuration,
        labels=MappingProxyType(dict(labels or {})),
    )


ClientFactory = Callable[[ConnectionDescriptor], KubernetesClient]


class TargetRegistry:
    """Thread-safe cache of ConnectionDescriptors keyed by ``namespace/name``.

    Constructed once per process and handed to both reconcilers.

    Example:
        ```python
        registry = TargetRegistry()
        registry.add_or_update("edge-1", "default", kubeconfig_bytes)
        registry.verify_connectivity("edge-1", "default")
        descriptor = registry.get("edge-1", "default")
        ```
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        connectivity_timeout: int = DEFAULT_CONNECTIVITY_TIMEOUT,
    ) -> None:
        """Initialize an empty registry.

        Args:
            client_factory: Builds a client for a descriptor; defaults to
                ``ConnectionDescriptor.new_client``.
            connectivity_timeout: Seconds allowed for a connectivity probe.
        """
        self._lock = threading.Lock()
        self._descriptors: dict[str, ConnectionDescriptor] = {}
        self._connectivity_timeout = connectivity_timeout
        self._client_factory = client_factory or (
            lambda d: d.new_client(request_timeout=connectivity_timeout)
        )
        self._log = logger.bind(entity="target_registry")

    def add_or_update(
        self,
        cluster_name: str,
        namespace: str,
        credential: bytes | str,
        labels: Mapping[str, str] | None = None,
    ) -> ConnectionDescriptor:
        """Parse credentials and store the resulting descriptor.

        Replaces any existing descriptor for the same key.

        Raises:
            InvalidCredentialError: If parsing fails. The registry is unchanged.
        """
        descriptor = parse_credentials(cluster_name, namespace, credential, labels)
        with self._lock:
            previous = self._descriptors.get(descriptor.key)
            self._descriptors[descriptor.key] = descriptor

        if previous is None:
            self._log.info("cluster_registered", cluster=cluster_name, namespace=namespace)
        elif previous.kubeconfig != descriptor.kubeconfig:
            self._log.info("cluster_credentials_rotated", cluster=cluster_name, namespace=namespace)
        return descriptor

    def get(self, cluster_name: str, namespace: str) -> ConnectionDescriptor:
        """Return the descriptor for a cluster.

        Raises:
            NotRegisteredError: If no descriptor is stored.
        """
        with self._lock:
            descriptor = self._descriptors.get(registry_key(cluster_name, namespace))
        if descriptor is None:
            raise NotRegisteredError(cluster_name, namespace)
        return descriptor

    def remove(self, cluster_name: str, namespace: str) -> bool:
        """Drop a descriptor. Removing an absent entry is not an error.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            removed = self._descriptors.pop(registry_key(cluster_name, namespace), None)
        if removed is not None:
            self._log.info("cluster_unregistered", cluster=cluster_name, namespace=namespace)
        return removed is not None

    def verify_connectivity(
        self,
        cluster_name: str,
        namespace: str,
        timeout: float | None = None,
    ) -> str:
        """Probe the cluster API with the stored descriptor.

        Performs one bounded namespace list and a version read. Registry
        state is never modified, so a transient outage keeps the cached
        descriptor.

        Returns:
            The cluster version (e.g. ``v1.29``).

        Raises:
            NotRegisteredError: If no descriptor is stored.
            KubernetesError: If the cluster cannot be reached or rejects the credentials.
        """
        descriptor = self.get(cluster_name, namespace)
        request_timeout = timeout or self._connectivity_timeout
        client = self._client_factory(descriptor)
        try:
            try:
                client.core_v1.list_namespace(limit=1, _request_timeout=request_timeout)
            except Exception as e:
                translated = client.translate_api_exception(e)
                if translated is e:
                    raise
                raise translated from e
            version = client.get_cluster_version(timeout=request_timeout)
        finally:
            client.close()

        self._log.debug("cluster_reachable", cluster=cluster_name, version=version)
        return version

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        with self._lock:
            return registry_key(key[0], key[1]) in self._descriptors

    def __len__(self) -> int:
        with self._lock:
            return len(self._descriptors)
