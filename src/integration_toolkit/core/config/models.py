"""Controller settings models.

Settings come from three layers, later layers winning: model defaults,
an optional YAML file, and ``KSIT_*`` environment variables. CLI flags are
applied on top by the caller.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class ConfigError(Exception):
    """Raised when the controller configuration cannot be loaded."""


def _positive(name: str, v: int) -> int:
    if v <= 0:
        raise ValueError(f"{name} must be positive")
    return v


class KubernetesSettings(BaseModel):
    """Connection settings for the control-plane cluster."""

    model_config = ConfigDict(extra="forbid")

    kubeconfig: str | None = None
    context: str | None = None
    request_timeout: int = 30
    retry_attempts: int = 3

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str | None) -> str | None:
        """Expand ~ in kubeconfig path."""
        return str(Path(v).expanduser()) if v else None

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, v: int) -> int:
        """Validate request_timeout is positive."""
        return _positive("request_timeout", v)

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry_attempts is at least one."""
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v


class HelmSettings(BaseModel):
    """Settings for the helm binary used by the installers."""

    model_config = ConfigDict(extra="forbid")

    binary_path: str | None = None
    repository_config: str = "/tmp/helm/repositories.yaml"
    repository_cache: str = "/tmp/helm/cache"
    install_timeout: int = 300

    @field_validator("install_timeout")
    @classmethod
    def validate_install_timeout(cls, v: int) -> int:
        """Validate install_timeout is positive."""
        return _positive("install_timeout", v)


class ControllerSettings(BaseModel):
    """Complete controller configuration.

    All intervals and timeouts are in seconds.
    """

    model_config = ConfigDict(extra="forbid")

    watch_namespace: str | None = None
    reconcile_interval: int = 30
    target_resync_interval: int = 60
    target_retry_interval: int = 30
    reconcile_timeout: int = 900
    max_concurrent_reconciles: int = 1
    cluster_concurrency: int = 4
    health_check_timeout: int = 10
    connectivity_timeout: int = 10
    stale_cluster_max_age: int = 3600
    stale_cleanup_period: int = 3600
    kubernetes: KubernetesSettings = KubernetesSettings()
    helm: HelmSettings = HelmSettings()

    @field_validator(
        "reconcile_interval",
        "target_resync_interval",
        "target_retry_interval",
        "reconcile_timeout",
        "health_check_timeout",
        "connectivity_timeout",
        "stale_cluster_max_age",
        "stale_cleanup_period",
    )
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Validate intervals and timeouts are positive."""
        return _positive("interval", v)

    @field_validator("max_concurrent_reconciles", "cluster_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate concurrency limits are at least one."""
        if v < 1:
            raise ValueError("concurrency must be at least 1")
        return v

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> ControllerSettings:
        """Create settings with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            KSIT_WATCH_NAMESPACE: Restrict watches to one namespace
            KSIT_RECONCILE_INTERVAL: Integration requeue interval
            KSIT_TARGET_RESYNC_INTERVAL: IntegrationTarget resync interval
            KSIT_TARGET_RETRY_INTERVAL: IntegrationTarget retry interval
            KSIT_RECONCILE_TIMEOUT: Deadline for one reconcile pass
            KSIT_MAX_CONCURRENT_RECONCILES: Workers per controller
            KSIT_CLUSTER_CONCURRENCY: Parallel clusters per Integration
            KSIT_HEALTH_CHECK_TIMEOUT: Timeout for remote health reads
            KSIT_CONNECTIVITY_TIMEOUT: Timeout for connectivity checks
            KSIT_KUBECONFIG: Control-plane kubeconfig path
            KSIT_CONTEXT: Control-plane kubeconfig context
            KSIT_REQUEST_TIMEOUT: Control-plane request timeout
            KSIT_HELM_BINARY: Explicit helm binary path
            KSIT_HELM_REPOSITORY_CONFIG: helm repositories.yaml path
            KSIT_HELM_REPOSITORY_CACHE: helm repository cache directory
            KSIT_HELM_INSTALL_TIMEOUT: Timeout for install and upgrade
        """
        config_dict: dict[str, Any] = dict(base_config) if base_config else {}
        k8s = dict(config_dict.get("kubernetes") or {})
        helm = dict(config_dict.get("helm") or {})

        if namespace := os.environ.get("KSIT_WATCH_NAMESPACE"):
            config_dict["watch_namespace"] = namespace

        int_overrides = {
            "KSIT_RECONCILE_INTERVAL": "reconcile_interval",
            "KSIT_TARGET_RESYNC_INTERVAL": "target_resync_interval",
            "KSIT_TARGET_RETRY_INTERVAL": "target_retry_interval",
            "KSIT_RECONCILE_TIMEOUT": "reconcile_timeout",
            "KSIT_MAX_CONCURRENT_RECONCILES": "max_concurrent_reconciles",
            "KSIT_CLUSTER_CONCURRENCY": "cluster_concurrency",
            "KSIT_HEALTH_CHECK_TIMEOUT": "health_check_timeout",
            "KSIT_CONNECTIVITY_TIMEOUT": "connectivity_timeout",
        }
        for env_name, field in int_overrides.items():
            if value := os.environ.get(env_name):
                config_dict[field] = int(value)

        if kubeconfig := os.environ.get("KSIT_KUBECONFIG"):
            k8s["kubeconfig"] = kubeconfig
        if context := os.environ.get("KSIT_CONTEXT"):
            k8s["context"] = context
        if timeout := os.environ.get("KSIT_REQUEST_TIMEOUT"):
            k8s["request_timeout"] = int(timeout)

        if binary := os.environ.get("KSIT_HELM_BINARY"):
            helm["binary_path"] = binary
        if repo_config := os.environ.get("KSIT_HELM_REPOSITORY_CONFIG"):
            helm["repository_config"] = repo_config
        if repo_cache := os.environ.get("KSIT_HELM_REPOSITORY_CACHE"):
            helm["repository_cache"] = repo_cache
        if install_timeout := os.environ.get("KSIT_HELM_INSTALL_TIMEOUT"):
            helm["install_timeout"] = int(install_timeout)

        if k8s:
            config_dict["kubernetes"] = k8s
        if helm:
            config_dict["helm"] = helm

        return cls.model_validate(config_dict)


def load_config(config_path: Path | None = None) -> ControllerSettings:
    """Load settings from an optional YAML file plus environment overrides.

    Args:
        config_path: Path to a YAML settings file, or None for defaults.

    Returns:
        Validated controller settings.

    Raises:
        ConfigError: If the file is missing, unparsable, or invalid.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_path}")
        raw = loaded

    try:
        return ControllerSettings.from_env(raw)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
