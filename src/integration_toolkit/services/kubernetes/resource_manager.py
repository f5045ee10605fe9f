"""Control-plane writes to ksit.io status subresources and credential secret reads.

Objects themselves arrive through the operator's watches; this module
only patches their status through ``CustomObjectsApi`` and reads the
Secrets that IntegrationTargets point at.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from integration_toolkit.integrations.kubernetes.exceptions import KubernetesNotFoundError
from integration_toolkit.models import (
    API_GROUP,
    API_VERSION,
    INTEGRATION_PLURAL,
    INTEGRATION_TARGET_PLURAL,
    Integration,
    IntegrationTarget,
    ObjectKey,
)
from integration_toolkit.services.kubernetes.base import K8sBaseManager


class ResourceManager(K8sBaseManager):
    """Writes Integration and IntegrationTarget status and reads Secrets.

    Status writes go through the status subresource, so they never
    conflict with spec edits or with the operator's own annotations.
    """

    _entity_name = "custom_resource"

    # =========================================================================
    # Integration
    # =========================================================================

    def update_integration_status(self, integration: Integration) -> None:
        """Write the Integration's status subresource."""
        self._patch_status(
            INTEGRATION_PLURAL,
            "Integration",
            integration.key,
            integration.status.to_api(),
        )

    # =========================================================================
    # IntegrationTarget
    # =========================================================================

    def update_target_status(self, target: IntegrationTarget) -> None:
        """Write the IntegrationTarget's status subresource."""
        self._patch_status(
            INTEGRATION_TARGET_PLURAL,
            "IntegrationTarget",
            target.key,
            target.status.to_api(),
        )

    # =========================================================================
    # Secrets
    # =========================================================================

    def get_secret_data(self, name: str, namespace: str | None = None) -> dict[str, bytes] | None:
        """Read and decode a Secret's data.

        Args:
            name: Secret name.
            namespace: Secret namespace.

        Returns:
            Decoded key/value pairs, or None if the Secret does not exist.
        """
        ns = self._resolve_namespace(namespace)
        self._log.debug("reading_secret", name=name, namespace=ns)

        def _read() -> Any:
            try:
                return self._client.core_v1.read_namespaced_secret(
                    name=name,
                    namespace=ns,
                    _request_timeout=self._client.timeout,
                )
            except Exception as e:
                self._handle_api_error(e, "Secret", name, ns)

        try:
            secret = self._with_retry(_read)
        except KubernetesNotFoundError:
            return None

        data: dict[str, bytes] = {}
        for key, value in (secret.data or {}).items():
            try:
                data[key] = base64.b64decode(value or "")
            except (binascii.Error, ValueError):
                self._log.warning("undecodable_secret_key", name=name, namespace=ns, key=key)
        return data

    # =========================================================================
    # Helpers
    # =========================================================================

    def _patch_status(
        self,
        plural: str,
        kind: str,
        key: ObjectKey,
        status: dict[str, Any],
    ) -> None:
        self._log.debug("updating_status", kind=kind, name=key.name, namespace=key.namespace)

        def _patch() -> None:
            try:
                self._client.custom_objects.patch_namespaced_custom_object_status(
                    API_GROUP,
                    API_VERSION,
                    key.namespace,
                    plural,
                    key.name,
                    {"status": status},
                    _request_timeout=self._client.timeout,
                )
            except Exception as e:
                self._handle_api_error(e, kind, key.name, key.namespace)

        self._with_retry(_patch)
