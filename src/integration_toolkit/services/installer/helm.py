"""Helm-backed installer.

Install protocol for one (cluster, Integration) pair:

1. Resolve effective chart parameters (explicit over per-tool default).
2. Derive the local repository name from the repository URL.
3. Write the cluster's kubeconfig to a private temp file that lives until
   the helm commands finish.
4. Register the repository; when newly added, fetch its index before any
   chart is resolved.
5. Resolve the chart against the local index.
6. Clear a release left pending by an interrupted helm process: a
   pending first install is uninstalled, any other pending operation is
   rolled back to the previous revision.
7. Upgrade the release if it exists in the namespace, otherwise install
   it with ``--create-namespace``. Both run with ``--atomic`` so a failed
   or timed-out operation is undone by helm.

Each failure is reported as an ``InstallerError`` naming the step.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from integration_toolkit.core.context import OperationCancelledError, OperationContext
from integration_toolkit.integrations.kubernetes.helm_client import (
    HELM_TIMEOUT_SECONDS,
    SHORT_TIMEOUT_SECONDS,
    HelmCancelledError,
    HelmClient,
    HelmError,
)
from integration_toolkit.integrations.kubernetes.models.helm import PENDING_INSTALL
from integration_toolkit.models import InstallMethod, Integration, IntegrationType
from integration_toolkit.services.installer.base import (
    InstallAction,
    Installer,
    InstallerError,
    InstallStep,
)

if TYPE_CHECKING:
    from integration_toolkit.integrations.kubernetes.models.helm import HelmRelease
    from integration_toolkit.services.cluster.registry import ConnectionDescriptor
    from integration_toolkit.services.installer.defaults import HelmDefaults

logger = structlog.get_logger()

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def repo_name_from_url(url: str) -> str:
    """Repository name helm should use for ``url``: its last path segment.

    ``https://argoproj.github.io/argo-helm/`` becomes ``argo-helm``.
    """
    trimmed = url.strip().rstrip("/")
    name = trimmed.rsplit("/", 1)[-1]
    return name or trimmed


@dataclass(frozen=True)
class HelmParams:
    """Effective chart parameters for one Integration."""

    repository: str
    repo_name: str
    chart: str
    version: str
    release_name: str
    namespace: str
    values: dict[str, str] = field(default_factory=dict)

    @property
    def chart_ref(self) -> str:
        return f"{self.repo_name}/{self.chart}"

    @property
    def set_values(self) -> list[str]:
        return [f"{key}={value}" for key, value in sorted(self.values.items())]


@contextlib.contextmanager
def kubeconfig_file(
    descriptor: ConnectionDescriptor,
    directory: str | None = None,
) -> Iterator[str]:
    """Write the descriptor's kubeconfig to a private temp file.

    The file is created with mode 0600 and removed when the block exits,
    whether or not the block raised.

    Yields:
        Path of the temp file.
    """
    prefix = "ksit-" + _UNSAFE_FILENAME_CHARS.sub("_", descriptor.cluster_name) + "-"
    try:
        fd, path = tempfile.mkstemp(prefix=prefix, suffix=".kubeconfig", dir=directory)
        with os.fdopen(fd, "wb") as f:
            f.write(descriptor.kubeconfig)
    except OSError as e:
        raise InstallerError(InstallStep.KUBECONFIG, f"writing temporary kubeconfig: {e}") from e
    try:
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)


class HelmInstaller(Installer):
    """Installs one tool type from a Helm chart."""

    def __init__(
        self,
        integration_type: IntegrationType,
        helm: HelmClient,
        defaults: HelmDefaults,
        *,
        install_timeout: int = HELM_TIMEOUT_SECONDS,
        repository_lock: threading.Lock | None = None,
        kubeconfig_dir: str | None = None,
    ) -> None:
        """Initialize the installer.

        Args:
            integration_type: Tool type handled by this installer.
            helm: Helm CLI client.
            defaults: Chart coordinates used when not overridden.
            install_timeout: Seconds allowed for install and upgrade.
            repository_lock: Serializes edits to the shared repository config.
            kubeconfig_dir: Directory for temporary kubeconfig files.
        """
        self.integration_type = integration_type
        self._helm = helm
        self._defaults = defaults
        self._install_timeout = install_timeout
        self._repository_lock = repository_lock or threading.Lock()
        self._kubeconfig_dir = kubeconfig_dir
        self._log = logger.bind(entity="helm_installer", type=integration_type.value)

    # =========================================================================
    # Parameter Resolution
    # =========================================================================

    def resolve(self, integration: Integration) -> HelmParams:
        """Compute effective chart parameters for an Integration.

        Raises:
            InstallerError: If the install method is unsupported or the
                result lacks a repository or chart.
        """
        auto_install = integration.spec.auto_install
        method = (auto_install.method if auto_install else "") or InstallMethod.HELM.value
        if method != InstallMethod.HELM.value:
            raise InstallerError(InstallStep.CONFIGURATION, f"unsupported install method '{method}'")

        explicit = auto_install.helm_config if auto_install else None
        d = self._defaults

        repository = (explicit.repository if explicit else "") or d.repository
        chart = (explicit.chart if explicit else "") or d.chart
        if not repository or not chart:
            raise InstallerError(
                InstallStep.CONFIGURATION, "helm repository and chart must be set"
            )

        values = dict(d.values)
        if explicit:
            values.update(explicit.values)

        return HelmParams(
            repository=repository,
            repo_name=repo_name_from_url(repository),
            chart=chart,
            version=(explicit.version if explicit else "") or d.version,
            release_name=(explicit.release_name if explicit else "") or d.release_name,
            namespace=integration.effective_namespace(self.integration_type.default_namespace),
            values=values,
        )

    def release_name(self, integration: Integration) -> str:
        """Name of the release this installer manages for ``integration``."""
        return self.resolve(integration).release_name

    # =========================================================================
    # Installer Operations
    # =========================================================================

    def is_installed(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> bool:
        """Report whether a deployed release with the expected name exists."""
        params = self.resolve(integration)
        with kubeconfig_file(descriptor, self._kubeconfig_dir) as path:
            release = self._find_release(ctx, params, path, all_releases=False)
        return release is not None

    def install(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> InstallAction:
        """Install the chart, or upgrade the existing release in place.

        Raises:
            InstallerError: Naming the step that failed.
            OperationCancelledError: If ``ctx`` is cancelled mid-way.
        """
        params = self.resolve(integration)
        log = self._log.bind(
            cluster=descriptor.cluster_name,
            release=params.release_name,
            namespace=params.namespace,
        )

        with kubeconfig_file(descriptor, self._kubeconfig_dir) as path:
            newly_added = self._ensure_repository(ctx, params)
            self._resolve_chart(ctx, params, refresh_on_miss=not newly_added)

            # Failed or pending releases still occupy the name
            existing = self._find_release(ctx, params, path, all_releases=True)
            if existing is not None and existing.pending:
                existing = self._recover_pending(ctx, params, existing, path)

            ctx.check()
            timeout = ctx.remaining(self._install_timeout)
            if existing is not None:
                log.info(
                    "upgrading_helm_release",
                    revision=existing.revision,
                    deployed=existing.deployed,
                )
                self._helm_call(
                    InstallStep.UPGRADE,
                    lambda: self._helm.upgrade(
                        params.release_name,
                        params.chart_ref,
                        namespace=params.namespace,
                        set_values=params.set_values,
                        version=params.version or None,
                        atomic=True,
                        timeout=timeout,
                        kubeconfig=path,
                        cancel=ctx.stop_event,
                    ),
                )
                return InstallAction.UPGRADED

            log.info("installing_helm_release", chart=params.chart_ref, version=params.version)
            self._helm_call(
                InstallStep.INSTALL,
                lambda: self._helm.install(
                    params.release_name,
                    params.chart_ref,
                    namespace=params.namespace,
                    set_values=params.set_values,
                    version=params.version or None,
                    create_namespace=True,
                    atomic=True,
                    timeout=timeout,
                    kubeconfig=path,
                    cancel=ctx.stop_event,
                ),
            )
            return InstallAction.INSTALLED

    def uninstall(
        self,
        ctx: OperationContext,
        descriptor: ConnectionDescriptor,
        integration: Integration,
    ) -> bool:
        """Remove the release if present."""
        params = self.resolve(integration)
        with kubeconfig_file(descriptor, self._kubeconfig_dir) as path:
            if self._find_release(ctx, params, path, all_releases=True) is None:
                self._log.debug(
                    "helm_release_absent",
                    cluster=descriptor.cluster_name,
                    release=params.release_name,
                )
                return False
            self._helm_call(
                InstallStep.UNINSTALL,
                lambda: self._helm.uninstall(
                    params.release_name,
                    namespace=params.namespace,
                    ignore_not_found=True,
                    timeout=ctx.remaining(self._install_timeout),
                    kubeconfig=path,
                    cancel=ctx.stop_event,
                ),
            )
        self._log.info(
            "helm_release_uninstalled",
            cluster=descriptor.cluster_name,
            release=params.release_name,
        )
        return True

    # =========================================================================
    # Protocol Steps
    # =========================================================================

    def _ensure_repository(self, ctx: OperationContext, params: HelmParams) -> bool:
        """Register the chart repository and fetch its index when new.

        Returns:
            True if the repository was added by this call.
        """
        with self._repository_lock:
            ctx.check()
            repos = self._helm_call(InstallStep.REPOSITORY_ADD, self._helm.repo_list)
            current = next((r for r in repos if r.name == params.repo_name), None)
            if current is not None and current.serves(params.repository):
                return False

            self._helm_call(
                InstallStep.REPOSITORY_ADD,
                lambda: self._helm.repo_add(
                    params.repo_name,
                    params.repository,
                    force_update=current is not None,
                    cancel=ctx.stop_event,
                ),
            )
            self._helm_call(
                InstallStep.INDEX_FETCH,
                lambda: self._helm.repo_update([params.repo_name], cancel=ctx.stop_event),
            )
        self._log.info("helm_repository_added", repo=params.repo_name, url=params.repository)
        return True

    def _resolve_chart(
        self,
        ctx: OperationContext,
        params: HelmParams,
        *,
        refresh_on_miss: bool,
    ) -> None:
        """Check that the chart version exists in the local index.

        A miss against a previously registered repository refreshes that
        repository's index once before giving up.
        """
        ctx.check()
        try:
            self._helm.show_chart(
                params.chart_ref,
                version=params.version or None,
                cancel=ctx.stop_event,
            )
            return
        except HelmCancelledError as e:
            raise OperationCancelledError(str(e)) from e
        except HelmError as e:
            if not refresh_on_miss:
                raise InstallerError(InstallStep.CHART_RESOLUTION, e.message) from e
            self._log.info("refreshing_stale_index", repo=params.repo_name, reason=e.message)

        with self._repository_lock:
            self._helm_call(
                InstallStep.INDEX_FETCH,
                lambda: self._helm.repo_update([params.repo_name], cancel=ctx.stop_event),
            )
        self._helm_call(
            InstallStep.CHART_RESOLUTION,
            lambda: self._helm.show_chart(
                params.chart_ref,
                version=params.version or None,
                cancel=ctx.stop_event,
            ),
        )

    def _recover_pending(
        self,
        ctx: OperationContext,
        params: HelmParams,
        release: HelmRelease,
        kubeconfig: str,
    ) -> HelmRelease | None:
        """Unblock a release stuck in a pending state.

        Returns:
            The release to upgrade, or None if it was removed and must be
            installed afresh.
        """
        ctx.check()
        timeout = ctx.remaining(self._install_timeout)
        log = self._log.bind(
            release=params.release_name,
            namespace=params.namespace,
            status=release.status,
            revision=release.revision,
        )

        if release.status == PENDING_INSTALL or release.revision <= 1:
            log.warning("removing_pending_helm_release")
            self._helm_call(
                InstallStep.UNINSTALL,
                lambda: self._helm.uninstall(
                    params.release_name,
                    namespace=params.namespace,
                    ignore_not_found=True,
                    timeout=timeout,
                    kubeconfig=kubeconfig,
                    cancel=ctx.stop_event,
                ),
            )
            return None

        log.warning("rolling_back_pending_helm_release")
        self._helm_call(
            InstallStep.ROLLBACK,
            lambda: self._helm.rollback(
                params.release_name,
                namespace=params.namespace,
                wait=True,
                timeout=timeout,
                kubeconfig=kubeconfig,
                cancel=ctx.stop_event,
            ),
        )
        return release

    def _find_release(
        self,
        ctx: OperationContext,
        params: HelmParams,
        kubeconfig: str,
        *,
        all_releases: bool,
    ) -> HelmRelease | None:
        ctx.check()
        releases = self._helm_call(
            InstallStep.RELEASE_LIST,
            lambda: self._helm.list_releases(
                namespace=params.namespace,
                all_releases=all_releases,
                filter_pattern=f"^{re.escape(params.release_name)}$",
                timeout=ctx.remaining(SHORT_TIMEOUT_SECONDS),
                kubeconfig=kubeconfig,
                cancel=ctx.stop_event,
            ),
        )
        for release in releases:
            if release.name == params.release_name:
                return release
        return None

    @staticmethod
    def _helm_call[T](step: InstallStep, fn: Callable[[], T]) -> T:
        """Run a helm operation, wrapping failures with the step name."""
        try:
            return fn()
        except HelmCancelledError as e:
            raise OperationCancelledError(f"{step} cancelled") from e
        except HelmError as e:
            raise InstallerError(step, e.message) from e
