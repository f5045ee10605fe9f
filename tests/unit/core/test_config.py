"""Unit tests for controller settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from integration_toolkit.core.config import (
    ConfigError,
    ControllerSettings,
    KubernetesSettings,
    load_config,
)


@pytest.mark.unit
class TestControllerSettingsDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        """Defaults match the documented intervals."""
        settings = ControllerSettings()

        assert settings.watch_namespace is None
        assert settings.reconcile_interval == 30
        assert settings.target_resync_interval == 60
        assert settings.target_retry_interval == 30
        assert settings.reconcile_timeout == 900
        assert settings.max_concurrent_reconciles == 1
        assert settings.helm.install_timeout == 300
        assert settings.kubernetes.request_timeout == 30

    def test_rejects_non_positive_interval(self) -> None:
        """Intervals must be positive."""
        with pytest.raises(ValidationError, match="must be positive"):
            ControllerSettings(reconcile_interval=0)

    def test_rejects_zero_concurrency(self) -> None:
        """Concurrency must be at least one."""
        with pytest.raises(ValidationError, match="at least 1"):
            ControllerSettings(cluster_concurrency=0)

    def test_rejects_unknown_fields(self) -> None:
        """Unknown keys are errors, not silently ignored."""
        with pytest.raises(ValidationError):
            ControllerSettings.model_validate({"reconcile_intreval": 10})

    def test_kubeconfig_expands_home(self) -> None:
        """A ~ in the kubeconfig path is expanded."""
        settings = KubernetesSettings(kubeconfig="~/.kube/config")
        assert settings.kubeconfig is not None
        assert not settings.kubeconfig.startswith("~")


@pytest.mark.unit
class TestFromEnv:
    """Tests for KSIT_* environment overrides."""

    def test_env_overrides_base_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment values win over the base config."""
        monkeypatch.setenv("KSIT_RECONCILE_INTERVAL", "45")
        monkeypatch.setenv("KSIT_WATCH_NAMESPACE", "platform")

        settings = ControllerSettings.from_env({"reconcile_interval": 10, "cluster_concurrency": 2})

        assert settings.reconcile_interval == 45
        assert settings.watch_namespace == "platform"
        assert settings.cluster_concurrency == 2

    def test_reconcile_timeout_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """KSIT_RECONCILE_TIMEOUT sets the per-pass deadline."""
        monkeypatch.setenv("KSIT_RECONCILE_TIMEOUT", "120")

        assert ControllerSettings.from_env().reconcile_timeout == 120

    def test_nested_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Kubernetes and helm sections take their own variables."""
        monkeypatch.setenv("KSIT_CONTEXT", "mgmt")
        monkeypatch.setenv("KSIT_HELM_BINARY", "/opt/helm")
        monkeypatch.setenv("KSIT_HELM_INSTALL_TIMEOUT", "600")

        settings = ControllerSettings.from_env({"kubernetes": {"request_timeout": 5}})

        assert settings.kubernetes.context == "mgmt"
        assert settings.kubernetes.request_timeout == 5
        assert settings.helm.binary_path == "/opt/helm"
        assert settings.helm.install_timeout == 600


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config."""

    def test_no_path_returns_defaults(self) -> None:
        """Without a file the defaults apply."""
        assert load_config(None) == ControllerSettings()

    def test_loads_yaml_file(self, tmp_path: Path) -> None:
        """Values are read from YAML."""
        path = tmp_path / "ksit.yaml"
        path.write_text("reconcile_interval: 15\nhelm:\n  binary_path: /usr/bin/helm\n")

        settings = load_config(path)

        assert settings.reconcile_interval == 15
        assert settings.helm.binary_path == "/usr/bin/helm"

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is a ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Unparsable YAML is a ConfigError."""
        path = tmp_path / "bad.yaml"
        path.write_text("reconcile_interval: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        """The document root must be a mapping."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_validation_failure(self, tmp_path: Path) -> None:
        """Invalid values surface as ConfigError."""
        path = tmp_path / "zero.yaml"
        path.write_text("reconcile_interval: 0\n")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)
