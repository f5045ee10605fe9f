"""Per-cluster wrapper around the official kubernetes client.

Each ``KubernetesClient`` owns its ``ApiClient`` and never touches the
package's process-wide default configuration, so the operator can hold
one client for the control plane and one per registered target cluster.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from integration_toolkit.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
    ResourceRef,
)

if TYPE_CHECKING:
    from kubernetes.client import (
        ApiClient,
        AppsV1Api,
        Configuration,
        CoreV1Api,
        CustomObjectsApi,
        VersionApi,
    )

logger = structlog.get_logger()

IN_CLUSTER_CONTEXT = "in-cluster"

_STATUS_ERRORS: dict[int, type[KubernetesError]] = {
    400: KubernetesValidationError,
    401: KubernetesAuthError,
    403: KubernetesAuthError,
    404: KubernetesNotFoundError,
    409: KubernetesConflictError,
    422: KubernetesValidationError,
}

# These build their message from the resource instead of the API reason
_RESOURCE_MESSAGES = (KubernetesNotFoundError, KubernetesConflictError)


class KubernetesClient:
    """API access to a single cluster.

    API group objects are created on first use and share the client's
    connection pool.

    Example:
        ```python
        with KubernetesClient.from_kubeconfig(context="kind-hub") as client:
            print(client.get_cluster_version())
        ```
    """

    def __init__(
        self,
        api_client: ApiClient,
        *,
        default_namespace: str = "default",
        request_timeout: int = 30,
        retry_attempts: int = 3,
        context: str | None = None,
    ) -> None:
        """Wrap an already configured ApiClient.

        Args:
            api_client: Configured kubernetes ApiClient.
            default_namespace: Namespace used when callers pass none.
            request_timeout: Default per-request timeout in seconds.
            retry_attempts: Attempts for transient connection errors.
            context: Kubeconfig context name, for logging only.
        """
        self._api_client = api_client
        self._default_namespace = default_namespace
        self._request_timeout = request_timeout
        self._retries = retry_attempts
        self._context = context
        self._groups: dict[str, Any] = {}

    @classmethod
    def from_configuration(cls, configuration: Configuration, **kwargs: Any) -> KubernetesClient:
        """Client for a cluster described by an in-memory Configuration."""
        from kubernetes.client import ApiClient

        return cls(ApiClient(configuration=configuration), **kwargs)

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: str | None = None,
        context: str | None = None,
        **kwargs: Any,
    ) -> KubernetesClient:
        """Client for the control-plane cluster.

        Reads ``kubeconfig`` (or the default location) and falls back to
        the pod's service account when no kubeconfig can be loaded.

        Raises:
            KubernetesConnectionError: If neither source yields a configuration.
        """
        from kubernetes import config
        from kubernetes.client import Configuration
        from kubernetes.config import ConfigException

        configuration = Configuration()
        try:
            config.load_kube_config(
                config_file=kubeconfig,
                context=context,
                client_configuration=configuration,
                persist_config=False,
            )
            source = context or "current-context"
        except (ConfigException, OSError) as kubeconfig_error:
            logger.debug("kubeconfig_unavailable", reason=str(kubeconfig_error))
            try:
                config.load_incluster_config(client_configuration=configuration)
            except ConfigException as e:
                raise KubernetesConnectionError(
                    "Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e
            source = IN_CLUSTER_CONTEXT

        logger.debug("control_plane_config_loaded", context=source, kubeconfig=kubeconfig)
        kwargs.setdefault("context", source)
        return cls.from_configuration(configuration, **kwargs)

    # =========================================================================
    # API Groups
    # =========================================================================

    def _group(self, name: str) -> Any:
        api = self._groups.get(name)
        if api is None:
            import kubernetes.client

            api = getattr(kubernetes.client, name)(self._api_client)
            self._groups[name] = api
        return api

    @property
    def core_v1(self) -> CoreV1Api:
        """Namespaces, pods, endpoints and secrets."""
        return self._group("CoreV1Api")

    @property
    def apps_v1(self) -> AppsV1Api:
        """Deployments and statefulsets."""
        return self._group("AppsV1Api")

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Integration and IntegrationTarget resources."""
        return self._group("CustomObjectsApi")

    @property
    def version_api(self) -> VersionApi:
        return self._group("VersionApi")

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Map a client or transport exception onto the KubernetesError tree.

        ``kind``, ``name`` and ``namespace`` identify the object the failed
        request addressed; not-found and conflict messages name it.
        Exceptions that already are KubernetesErrors are returned unchanged.
        """
        from kubernetes.client import ApiException
        from urllib3.exceptions import HTTPError as TransportError

        if isinstance(e, KubernetesError):
            return e

        resource = ResourceRef(kind, name, namespace) if kind and name else None

        if isinstance(e, (TransportError, OSError)):
            return KubernetesConnectionError(
                f"cluster API unreachable: {e}", original_error=e, resource=resource
            )
        if not isinstance(e, ApiException):
            return KubernetesError(str(e), resource=resource)

        # status 0 is what the client reports when no response arrived
        if not e.status:
            return KubernetesConnectionError(
                f"cluster API unreachable: {e.reason or e}", original_error=e, resource=resource
            )

        error_cls = _STATUS_ERRORS.get(e.status, KubernetesError)
        message = None if issubclass(error_cls, _RESOURCE_MESSAGES) else e.reason
        return error_cls(message, status_code=e.status, resource=resource)

    # =========================================================================
    # Retry Decorator
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Tenacity decorator that retries connection errors with exponential backoff."""
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    # =========================================================================
    # Connection Check
    # =========================================================================

    def get_cluster_version(self, timeout: float | None = None) -> str:
        """Server version as ``vMAJOR.MINOR``.

        Raises:
            KubernetesError: If the request fails.
        """
        try:
            info = self.version_api.get_code(_request_timeout=timeout or self._request_timeout)
        except Exception as e:
            raise self.translate_api_exception(e) from e
        return f"v{info.major}.{info.minor}"

    @property
    def default_namespace(self) -> str:
        return self._default_namespace

    @property
    def timeout(self) -> int:
        """Default request timeout in seconds."""
        return self._request_timeout

    @property
    def context(self) -> str | None:
        return self._context

    @property
    def configuration(self) -> Configuration:
        """Connection settings the client was built from."""
        configuration: Configuration = self._api_client.configuration
        return configuration

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Drop the API group objects and close the connection pool."""
        self._groups.clear()
        self._api_client.close()
        logger.debug("kubernetes_client_closed", context=self._context)

    def __enter__(self) -> KubernetesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
