"""Helm CLI wrapper used by the chart installer.

Each command runs the helm binary in a subprocess. Cluster-facing
commands take the path of a per-cluster kubeconfig file, repository
commands share one repositories file and cache owned by the operator, and
any command can be abandoned through a cancellation event.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Any

import structlog
import yaml

from integration_toolkit.integrations.kubernetes.exceptions import KubernetesError
from integration_toolkit.integrations.kubernetes.models.helm import (
    HelmChart,
    HelmCommandResult,
    HelmRelease,
    HelmRepo,
)

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HELM_TIMEOUT_SECONDS = 300
VERSION_TIMEOUT_SECONDS = 10
SHORT_TIMEOUT_SECONDS = 30
POLL_INTERVAL_SECONDS = 0.5
# helm gets this much less than the process deadline so it can record a
# failed release itself instead of being killed mid-operation
KILL_GRACE_SECONDS = 30

HELM_INSTALL_DOCS = "https://helm.sh/docs/intro/install/"


def helm_timeout(timeout: float) -> int:
    """helm's own ``--timeout`` for a command whose process may run ``timeout`` seconds."""
    return max(1, int(max(timeout - KILL_GRACE_SECONDS, timeout / 2)))


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HelmError(KubernetesError):
    """A helm invocation failed or could not be started."""

    def __init__(self, message: str, stderr: str | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr


class HelmBinaryNotFoundError(HelmError):
    def __init__(self, location: str = "PATH") -> None:
        super().__init__(
            f"helm binary not found in {location}. Install from: {HELM_INSTALL_DOCS}"
        )


class HelmCommandError(HelmError):
    """helm exited non-zero; ``stderr`` holds its diagnostics."""


class HelmCancelledError(HelmError):
    """The command was killed because its cancellation event was set."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HelmClient:
    """Runs helm commands and parses their JSON or YAML output."""

    def __init__(
        self,
        binary_path: str | None = None,
        *,
        repository_config: str | None = None,
        repository_cache: str | None = None,
    ) -> None:
        """Locate the binary and remember the shared repository location.

        Args:
            binary_path: Explicit helm binary; searched on PATH when None.
            repository_config: repositories.yaml passed to every command.
            repository_cache: Directory for downloaded repository indexes.

        Raises:
            HelmBinaryNotFoundError: If no binary is found.
        """
        self._binary = self._find_binary(binary_path)
        self._repository_config = repository_config
        self._repository_cache = repository_cache
        self._log = logger.bind(binary=self._binary)

    @staticmethod
    def _find_binary(binary_path: str | None) -> str:
        if binary_path:
            path = Path(binary_path)
            if not path.exists():
                raise HelmBinaryNotFoundError(binary_path)
            return str(path.resolve())
        found = shutil.which("helm")
        if not found:
            raise HelmBinaryNotFoundError()
        return found

    def _trailing_flags(self, kubeconfig: str | None) -> list[str]:
        flags: list[str] = []
        for flag, value in (
            ("--kubeconfig", kubeconfig),
            ("--repository-config", self._repository_config),
            ("--repository-cache", self._repository_cache),
        ):
            if value:
                flags.extend([flag, value])
        return flags

    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------

    def _run(
        self,
        args: list[str],
        *,
        timeout: float = HELM_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """Run ``helm <args>`` and return its captured output.

        Raises:
            HelmCommandError: On a non-zero exit.
            HelmCancelledError: If ``cancel`` is set before or during the run.
            HelmError: If the command outlives ``timeout``.
        """
        if cancel is not None and cancel.is_set():
            raise HelmCancelledError("Helm command cancelled before start")

        self._log.debug("running_helm_command", args=args)
        proc = subprocess.Popen(
            [self._binary, *args, *self._trailing_flags(kubeconfig)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        stdout, stderr = self._wait(proc, timeout, cancel)

        if proc.returncode != 0:
            detail = stderr.strip() if stderr else f"exit code {proc.returncode}"
            raise HelmCommandError(f"Helm command failed: {detail}", stderr=stderr)
        return HelmCommandResult(args=tuple(args), stdout=stdout, stderr=stderr)

    @staticmethod
    def _wait(
        proc: subprocess.Popen[str],
        timeout: float,
        cancel: threading.Event | None,
    ) -> tuple[str, str]:
        """Collect the process output, polling so a cancel kills it promptly."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                return proc.communicate(timeout=POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    error: HelmError = HelmCancelledError("Helm command cancelled")
                elif time.monotonic() >= deadline:
                    error = HelmError(f"Helm command timed out after {timeout:g}s")
                else:
                    continue
            proc.kill()
            proc.communicate()
            raise error

    def _run_json(self, args: list[str], **kwargs: Any) -> list[dict[str, Any]]:
        result = self._run(args, **kwargs)
        return json.loads(result.stdout) if result.stdout.strip() else []

    def get_version(self) -> str:
        """Client version without build metadata, e.g. ``v3.17.0``."""
        result = self._run(["version", "--short"], timeout=VERSION_TIMEOUT_SECONDS)
        return result.stdout.strip().partition("+")[0]

    # -----------------------------------------------------------------------
    # Releases
    # -----------------------------------------------------------------------

    def _deploy(
        self,
        verb: str,
        release_name: str,
        chart: str,
        *,
        namespace: str | None,
        set_values: list[str] | None,
        version: str | None,
        wait: bool,
        atomic: bool,
        timeout: float,
        kubeconfig: str | None,
        cancel: threading.Event | None,
        extra: tuple[str, ...] = (),
    ) -> HelmCommandResult:
        args = [verb, release_name, chart]
        if namespace:
            args.extend(["--namespace", namespace])
        if version:
            args.extend(["--version", version])
        for value in set_values or ():
            args.extend(["--set", value])
        if atomic:
            args.append("--atomic")
        elif wait:
            args.append("--wait")
        if wait or atomic:
            args.extend(["--timeout", f"{helm_timeout(timeout)}s"])
        args.extend(extra)

        result = self._run(args, timeout=timeout, kubeconfig=kubeconfig, cancel=cancel)
        self._log.info(f"helm_{verb}_success", release=release_name, chart=chart)
        return result

    def install(
        self,
        release_name: str,
        chart: str,
        *,
        namespace: str | None = None,
        set_values: list[str] | None = None,
        version: str | None = None,
        create_namespace: bool = False,
        wait: bool = False,
        atomic: bool = False,
        timeout: float = HELM_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """``helm install``.

        Args:
            release_name: Name for the release.
            chart: Chart reference, ``repo/chart``.
            namespace: Namespace of the release.
            set_values: ``key=value`` overrides, one ``--set`` each.
            version: Chart version; latest when None.
            create_namespace: Let helm create ``namespace``.
            wait: Block until the release's workloads are ready.
            atomic: Wait, and undo the operation if it fails or times out.
            timeout: Seconds allowed for the whole command.
            kubeconfig: Kubeconfig file of the target cluster.
            cancel: Event that aborts the command when set.
        """
        return self._deploy(
            "install",
            release_name,
            chart,
            namespace=namespace,
            set_values=set_values,
            version=version,
            wait=wait,
            atomic=atomic,
            timeout=timeout,
            kubeconfig=kubeconfig,
            cancel=cancel,
            extra=("--create-namespace",) if create_namespace else (),
        )

    def upgrade(
        self,
        release_name: str,
        chart: str,
        *,
        namespace: str | None = None,
        set_values: list[str] | None = None,
        version: str | None = None,
        wait: bool = False,
        atomic: bool = False,
        timeout: float = HELM_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """``helm upgrade`` of an existing release; arguments as for :meth:`install`."""
        return self._deploy(
            "upgrade",
            release_name,
            chart,
            namespace=namespace,
            set_values=set_values,
            version=version,
            wait=wait,
            atomic=atomic,
            timeout=timeout,
            kubeconfig=kubeconfig,
            cancel=cancel,
        )

    def uninstall(
        self,
        release_name: str,
        *,
        namespace: str | None = None,
        ignore_not_found: bool = False,
        timeout: float = HELM_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        args = ["uninstall", release_name]
        if namespace:
            args.extend(["--namespace", namespace])
        if ignore_not_found:
            args.append("--ignore-not-found")

        result = self._run(args, timeout=timeout, kubeconfig=kubeconfig, cancel=cancel)
        self._log.info("helm_uninstall_success", release=release_name)
        return result

    def rollback(
        self,
        release_name: str,
        revision: int | None = None,
        *,
        namespace: str | None = None,
        wait: bool = False,
        timeout: float = HELM_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """``helm rollback`` to ``revision``, or to the previous one when None."""
        args = ["rollback", release_name]
        if revision is not None:
            args.append(str(revision))
        if namespace:
            args.extend(["--namespace", namespace])
        if wait:
            args.extend(["--wait", "--timeout", f"{helm_timeout(timeout)}s"])

        result = self._run(args, timeout=timeout, kubeconfig=kubeconfig, cancel=cancel)
        self._log.info("helm_rollback_success", release=release_name, revision=revision)
        return result

    def list_releases(
        self,
        *,
        namespace: str | None = None,
        all_releases: bool = False,
        filter_pattern: str | None = None,
        timeout: float = SHORT_TIMEOUT_SECONDS,
        kubeconfig: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[HelmRelease]:
        """Releases in ``namespace``.

        ``all_releases`` includes failed and pending releases, which still
        hold their name. ``filter_pattern`` is a regular expression on the
        release name.
        """
        args = ["list", "--output", "json"]
        if namespace:
            args.extend(["--namespace", namespace])
        if all_releases:
            args.append("--all")
        if filter_pattern:
            args.extend(["--filter", filter_pattern])

        entries = self._run_json(
            args,
            timeout=min(timeout, SHORT_TIMEOUT_SECONDS),
            kubeconfig=kubeconfig,
            cancel=cancel,
        )
        return [HelmRelease.from_list_entry(entry) for entry in entries]

    # -----------------------------------------------------------------------
    # Repositories and charts
    # -----------------------------------------------------------------------

    def repo_add(
        self,
        name: str,
        url: str,
        *,
        force_update: bool = False,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """Register a repository; ``force_update`` replaces one with the same name."""
        args = ["repo", "add", name, url]
        if force_update:
            args.append("--force-update")

        result = self._run(args, timeout=SHORT_TIMEOUT_SECONDS, cancel=cancel)
        self._log.info("helm_repo_added", name=name, url=url)
        return result

    def repo_list(self) -> list[HelmRepo]:
        try:
            entries = self._run_json(
                ["repo", "list", "--output", "json"], timeout=SHORT_TIMEOUT_SECONDS
            )
        except HelmCommandError as e:
            # helm exits non-zero when the repositories file is empty or absent
            if e.stderr and "no repositories" in e.stderr.lower():
                return []
            raise
        return [HelmRepo.from_list_entry(entry) for entry in entries]

    def repo_update(
        self,
        names: list[str] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> HelmCommandResult:
        """Download the indexes of ``names``, or of every repository when None."""
        result = self._run(
            ["repo", "update", *(names or [])],
            timeout=SHORT_TIMEOUT_SECONDS,
            cancel=cancel,
        )
        self._log.info("helm_repo_updated", repos=names or "all")
        return result

    def show_chart(
        self,
        chart: str,
        *,
        version: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HelmChart:
        """Resolve ``chart`` against the local repository indexes.

        Raises:
            HelmCommandError: If the chart or version is not in the index.
        """
        args = ["show", "chart", chart]
        if version:
            args.extend(["--version", version])

        result = self._run(args, timeout=SHORT_TIMEOUT_SECONDS, cancel=cancel)
        return HelmChart.from_chart_yaml(yaml.safe_load(result.stdout) or {})
