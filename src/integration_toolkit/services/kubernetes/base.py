"""Shared plumbing for services that issue API calls against one cluster."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, NoReturn

import structlog

if TYPE_CHECKING:
    from integration_toolkit.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()


class K8sBaseManager:
    """Holds a cluster client and a logger bound to ``_entity_name``.

    Subclasses wrap raw API calls in ``_with_retry`` and route failures
    through ``_handle_api_error`` so callers only ever see KubernetesError.
    """

    _entity_name: str = ""

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity=self._entity_name)

    def _resolve_namespace(self, namespace: str | None) -> str:
        return namespace or self._client.default_namespace

    def _with_retry[T](self, fn: Callable[[], T]) -> T:
        """Run ``fn`` under the client's retry policy for connection errors."""
        decorate: Callable[[Callable[[], T]], Callable[[], T]] = (
            self._client.make_retry_decorator()
        )
        return decorate(fn)()

    def _handle_api_error(
        self,
        e: Exception,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> NoReturn:
        """Raise the KubernetesError for ``e``, chained to it unless it already is one."""
        translated = self._client.translate_api_exception(e, kind, name, namespace)
        if translated is e:
            raise translated
        raise translated from e
