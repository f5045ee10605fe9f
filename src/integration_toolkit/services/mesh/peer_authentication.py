"""Mesh-wide mutual TLS for Istio integrations.

An istio Integration whose config sets ``enableMTLS: "true"`` gets a
``PeerAuthentication`` named ``default`` in the Istio namespace of each
healthy target cluster. A policy that already exists is left as it is, so
operators can loosen or tighten it by hand.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from integration_toolkit.integrations.kubernetes.exceptions import KubernetesNotFoundError
from integration_toolkit.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from integration_toolkit.core.context import OperationContext
    from integration_toolkit.integrations.kubernetes.client import KubernetesClient
    from integration_toolkit.services.cluster.registry import ConnectionDescriptor

logger = structlog.get_logger()

MTLS_CONFIG_KEY = "enableMTLS"

PEER_AUTHENTICATION_GROUP = "security.istio.io"
PEER_AUTHENTICATION_VERSION = "v1beta1"
PEER_AUTHENTICATION_PLURAL = "peerauthentications"
PEER_AUTHENTICATION_KIND = "PeerAuthentication"

DEFAULT_POLICY_NAME = "default"
STRICT = "STRICT"


def mtls_requested(config: Mapping[str, str]) -> bool:
    return config.get(MTLS_CONFIG_KEY) == "true"


def build_peer_authentication(
    namespace: str,
    *,
    name: str = DEFAULT_POLICY_NAME,
    mode: str = STRICT,
    selector: Mapping[str, str] | None = None,
    port_modes: Mapping[int, str] | None = None,
) -> dict[str, Any]:
    """PeerAuthentication manifest.

    Args:
        namespace: Namespace of the policy; the Istio root namespace makes
            it mesh-wide.
        name: Policy name.
        mode: ``STRICT``, ``PERMISSIVE`` or ``DISABLE``.
        selector: Workload labels the policy is limited to.
        port_modes: Per-port overrides of ``mode``.
    """
    spec: dict[str, Any] = {"mtls": {"mode": mode}}
    if selector:
        spec["selector"] = {"matchLabels": dict(selector)}
    if port_modes:
        spec["portLevelMtls"] = {str(port): {"mode": m} for port, m in port_modes.items()}
    return {
        "apiVersion": f"{PEER_AUTHENTICATION_GROUP}/{PEER_AUTHENTICATION_VERSION}",
        "kind": PEER_AUTHENTICATION_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


class PeerAuthenticationManager(K8sBaseManager):
    """Reads and creates PeerAuthentication objects on one cluster."""

    _entity_name = "peer_authentication"

    def get(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Get a policy, or None if it does not exist."""

        def _read() -> dict[str, Any]:
            try:
                return self._client.custom_objects.get_namespaced_custom_object(
                    PEER_AUTHENTICATION_GROUP,
                    PEER_AUTHENTICATION_VERSION,
                    namespace,
                    PEER_AUTHENTICATION_PLURAL,
                    name,
                    _request_timeout=self._client.timeout,
                )
            except Exception as e:
                self._handle_api_error(e, PEER_AUTHENTICATION_KIND, name, namespace)

        try:
            return self._with_retry(_read)
        except KubernetesNotFoundError:
            return None

    def create(self, body: dict[str, Any]) -> dict[str, Any]:
        metadata = body["metadata"]
        try:
            result: dict[str, Any] = self._client.custom_objects.create_namespaced_custom_object(
                PEER_AUTHENTICATION_GROUP,
                PEER_AUTHENTICATION_VERSION,
                metadata["namespace"],
                PEER_AUTHENTICATION_PLURAL,
                body,
                _request_timeout=self._client.timeout,
            )
        except Exception as e:
            self._handle_api_error(
                e, PEER_AUTHENTICATION_KIND, metadata["name"], metadata["namespace"]
            )
        self._log.info(
            "peer_authentication_created",
            name=metadata["name"],
            namespace=metadata["namespace"],
            mode=body["spec"]["mtls"]["mode"],
        )
        return result

    def ensure(self, namespace: str, mode: str = STRICT) -> bool:
        """Create the default policy unless one exists.

        Returns:
            True if the policy was created by this call.
        """
        if self.get(DEFAULT_POLICY_NAME, namespace) is not None:
            self._log.debug("peer_authentication_exists", namespace=namespace)
            return False
        self.create(build_peer_authentication(namespace, mode=mode))
        return True


ClientFactory = Callable[["ConnectionDescriptor"], "KubernetesClient"]


class MeshConfigurator:
    """Applies mesh policy to a target cluster."""

    def __init__(self, client_factory: ClientFactory | None = None, *, timeout: int = 10) -> None:
        self._client_factory = client_factory or (
            lambda d: d.new_client(request_timeout=timeout)
        )

    def enable_mtls(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        namespace: str,
    ) -> bool:
        """Require mutual TLS mesh-wide on the descriptor's cluster.

        Returns:
            True if a policy was created, False if one was already there.

        Raises:
            KubernetesError: If the cluster cannot be read or written.
            OperationCancelledError: If ``ctx`` is cancelled.
        """
        ctx.check()
        client = self._client_factory(descriptor)
        try:
            return PeerAuthenticationManager(client).ensure(namespace)
        finally:
            client.close()
