"""Shared pytest fixtures for integration_toolkit tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import typer
import yaml
from typer.testing import CliRunner

from integration_toolkit.cli.main import app


def make_kubeconfig(
    server: str = "https://1.2.3.4:6443",
    token: str = "test-token",
    cluster: str = "edge",
) -> bytes:
    """Serialize a minimal token-authenticated kubeconfig."""
    document: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": cluster, "cluster": {"server": server}}],
        "users": [{"name": f"{cluster}-admin", "user": {"token": token}}],
        "contexts": [
            {
                "name": cluster,
                "context": {"cluster": cluster, "user": f"{cluster}-admin"},
            }
        ],
        "current-context": cluster,
    }
    return yaml.safe_dump(document).encode()


@pytest.fixture
def kubeconfig_factory() -> Callable[..., bytes]:
    """Build kubeconfig bytes for a given server and token."""
    return make_kubeconfig


@pytest.fixture
def kubeconfig_bytes() -> bytes:
    """A valid kubeconfig pointing at https://1.2.3.4:6443."""
    return make_kubeconfig()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_app() -> typer.Typer:
    """Return the CLI app for testing."""
    return app


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("KSIT_"):
            monkeypatch.delenv(key, raising=False)
