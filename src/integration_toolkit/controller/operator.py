"""kopf handlers for Integration and IntegrationTarget objects.

kopf owns the watches, per-object serialization, the Integration
finalizer and retry timing. Each handler parses the event body into a
model, runs the reconciler under a fresh deadline, and turns a ``retry``
result into ``kopf.TemporaryError`` so the next attempt comes after the
retry interval instead of the next timer tick.

Handlers are registered on an explicit ``kopf.OperatorRegistry`` rather
than the module-level default so tests and embedders can build several.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import kopf
import structlog

from integration_toolkit.core.context import OperationContext
from integration_toolkit.models import (
    API_GROUP,
    API_VERSION,
    FINALIZER,
    INTEGRATION_PLURAL,
    INTEGRATION_TARGET_PLURAL,
    Integration,
    IntegrationTarget,
    ObjectKey,
)

if TYPE_CHECKING:
    from kubernetes.client import Configuration

    from integration_toolkit.controller.integration_reconciler import IntegrationReconciler
    from integration_toolkit.controller.result import ReconcileResult
    from integration_toolkit.controller.target_reconciler import TargetReconciler
    from integration_toolkit.core.config import ControllerSettings
    from integration_toolkit.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

DIFF_BASE_KEY = "last-handled-configuration"
DEFAULT_RETRY_DELAY = 60.0


def settle(result: ReconcileResult) -> None:
    """Hand a retry request back to kopf.

    Raises:
        kopf.TemporaryError: If the pass asked to be retried.
    """
    if result.retry:
        delay = result.requeue_after if result.requeue_after is not None else DEFAULT_RETRY_DELAY
        raise kopf.TemporaryError(result.message or "reconcile will be retried", delay=delay)


def integration_enabled(spec: Mapping[str, Any], **_: Any) -> bool:
    return bool(spec.get("enabled", True))


class IntegrationHandlers:
    """kopf entry points for Integration objects."""

    def __init__(
        self,
        reconciler: IntegrationReconciler,
        stop_event: threading.Event,
        *,
        reconcile_timeout: float,
    ) -> None:
        self._reconciler = reconciler
        self._stop = stop_event
        self._timeout = reconcile_timeout

    def reconcile(self, body: Mapping[str, Any], **_: Any) -> None:
        integration = Integration.from_k8s_object(dict(body))
        ctx = OperationContext(self._stop).with_timeout(self._timeout)
        settle(self._reconciler.reconcile(ctx, integration))

    def delete(self, body: Mapping[str, Any], **_: Any) -> None:
        self._reconciler.finalize(Integration.from_k8s_object(dict(body)))


class TargetHandlers:
    """kopf entry points for IntegrationTarget objects."""

    def __init__(
        self,
        reconciler: TargetReconciler,
        stop_event: threading.Event,
        *,
        reconcile_timeout: float,
    ) -> None:
        self._reconciler = reconciler
        self._stop = stop_event
        self._timeout = reconcile_timeout

    def reconcile(self, body: Mapping[str, Any], **_: Any) -> None:
        target = IntegrationTarget.from_k8s_object(dict(body))
        ctx = OperationContext(self._stop).with_timeout(self._timeout)
        settle(self._reconciler.reconcile(ctx, target))

    def delete(self, name: str, namespace: str, **_: Any) -> None:
        self._reconciler.forget(ObjectKey(namespace, name))


# =============================================================================
# Operator settings and login
# =============================================================================


def apply_operator_settings(
    operator_settings: kopf.OperatorSettings, settings: ControllerSettings
) -> None:
    """Point kopf's bookkeeping at ksit.io annotations and size its pools."""
    operator_settings.persistence.finalizer = FINALIZER
    operator_settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=API_GROUP
    )
    operator_settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=API_GROUP,
        key=DIFF_BASE_KEY,
    )
    # Sync handlers of both kinds share one thread pool
    operator_settings.execution.max_workers = 2 * settings.max_concurrent_reconciles
    operator_settings.posting.level = logging.WARNING
    operator_settings.networking.request_timeout = settings.kubernetes.request_timeout


def connection_info(
    configuration: Configuration, default_namespace: str | None = None
) -> kopf.ConnectionInfo:
    """kopf credentials equivalent to a kubernetes client Configuration."""
    scheme: str | None = None
    token: str | None = None
    authorization = configuration.get_api_key_with_prefix("authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if not token:
            scheme, token = "Bearer", scheme
    return kopf.ConnectionInfo(
        server=configuration.host,
        ca_path=configuration.ssl_ca_cert or None,
        insecure=not configuration.verify_ssl,
        username=configuration.username or None,
        password=configuration.password or None,
        scheme=scheme,
        token=token,
        certificate_path=configuration.cert_file or None,
        private_key_path=configuration.key_file or None,
        default_namespace=default_namespace,
    )


# =============================================================================
# Registry
# =============================================================================


def build_registry(
    integrations: IntegrationHandlers,
    targets: TargetHandlers,
    settings: ControllerSettings,
    client: KubernetesClient,
) -> kopf.OperatorRegistry:
    """Register every handler on a new registry.

    Integrations are reconciled on resume, create and spec changes, then
    every ``reconcile_interval`` while enabled; deletion waits for the
    finalize handler. IntegrationTargets are resynced every
    ``target_resync_interval`` and need no finalizer.
    """
    registry = kopf.OperatorRegistry()

    def configure(**kwargs: Any) -> None:
        apply_operator_settings(kwargs["settings"], settings)

    def login(**_: Any) -> kopf.ConnectionInfo:
        return connection_info(client.configuration, client.default_namespace)

    kopf.on.startup(registry=registry)(configure)
    kopf.on.login(registry=registry)(login)

    integration = (API_GROUP, API_VERSION, INTEGRATION_PLURAL)
    kopf.on.resume(*integration, id="reconcile", registry=registry)(integrations.reconcile)
    kopf.on.create(*integration, id="reconcile", registry=registry)(integrations.reconcile)
    kopf.on.update(*integration, id="reconcile", field="spec", registry=registry)(
        integrations.reconcile
    )
    kopf.timer(
        *integration,
        id="resync",
        interval=settings.reconcile_interval,
        initial_delay=settings.reconcile_interval,
        when=integration_enabled,
        registry=registry,
    )(integrations.reconcile)
    kopf.on.delete(*integration, id="finalize", registry=registry)(integrations.delete)

    target = (API_GROUP, API_VERSION, INTEGRATION_TARGET_PLURAL)
    kopf.on.resume(*target, id="reconcile", registry=registry)(targets.reconcile)
    kopf.on.create(*target, id="reconcile", registry=registry)(targets.reconcile)
    kopf.on.update(*target, id="reconcile", field="spec", registry=registry)(targets.reconcile)
    kopf.timer(
        *target,
        id="resync",
        interval=settings.target_resync_interval,
        initial_delay=settings.target_resync_interval,
        registry=registry,
    )(targets.reconcile)
    kopf.on.delete(*target, id="forget", optional=True, registry=registry)(targets.delete)

    logger.debug("operator_handlers_registered", namespace=settings.watch_namespace or "*")
    return registry
