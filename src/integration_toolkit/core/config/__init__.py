"""Configuration management with Pydantic validation."""

from integration_toolkit.core.config.models import (
    ConfigError,
    ControllerSettings,
    HelmSettings,
    KubernetesSettings,
    load_config,
)

__all__ = [
    "ConfigError",
    "ControllerSettings",
    "HelmSettings",
    "KubernetesSettings",
    "load_config",
]
