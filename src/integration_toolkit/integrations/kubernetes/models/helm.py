"""Helm CLI output, parsed into the fields the installer acts on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEPLOYED = "deployed"
PENDING_INSTALL = "pending-install"


def _normalize_url(url: str) -> str:
    return url.strip().rstrip("/")


@dataclass(frozen=True)
class HelmRelease:
    """One entry of ``helm list --output json``.

    ``chart`` is helm's combined ``<name>-<version>`` label.
    """

    name: str
    namespace: str
    revision: int
    status: str
    chart: str = ""
    app_version: str = ""

    @classmethod
    def from_list_entry(cls, entry: dict[str, Any]) -> HelmRelease:
        # helm reports the revision as a string
        return cls(
            name=str(entry.get("name", "")),
            namespace=str(entry.get("namespace", "")),
            revision=int(entry.get("revision") or 0),
            status=str(entry.get("status", "")),
            chart=str(entry.get("chart", "")),
            app_version=str(entry.get("app_version", "")),
        )

    @property
    def deployed(self) -> bool:
        return self.status == DEPLOYED

    @property
    def pending(self) -> bool:
        """An operation on the release started and never finished.

        helm refuses any further install or upgrade of such a release.
        """
        return self.status.startswith("pending-")

    @property
    def chart_version(self) -> str:
        """Version part of the chart label, empty when it carries none."""
        _, sep, version = self.chart.rpartition("-")
        return version if sep and version[:1].isdigit() else ""


@dataclass(frozen=True)
class HelmRepo:
    """A repository registered in the helm repositories file."""

    name: str
    url: str

    @classmethod
    def from_list_entry(cls, entry: dict[str, Any]) -> HelmRepo:
        return cls(name=str(entry.get("name", "")), url=str(entry.get("url", "")))

    def serves(self, url: str) -> bool:
        """True if this repository points at ``url``, ignoring a trailing slash."""
        return _normalize_url(self.url) == _normalize_url(url)


@dataclass(frozen=True)
class HelmChart:
    """Chart.yaml metadata of a chart resolved from a repository index."""

    name: str
    version: str
    app_version: str = ""

    @classmethod
    def from_chart_yaml(cls, document: dict[str, Any]) -> HelmChart:
        return cls(
            name=str(document.get("name", "")),
            version=str(document.get("version", "")),
            app_version=str(document.get("appVersion", "")),
        )


@dataclass(frozen=True)
class HelmCommandResult:
    """Captured output of a helm invocation that exited zero."""

    args: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
