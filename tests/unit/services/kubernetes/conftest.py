"""Shared fixtures for Kubernetes service tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from integration_toolkit.integrations.kubernetes.client import KubernetesClient


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Create a mock Kubernetes client with API sub-mocks.

    Error translation is the real one and retries are disabled, so
    managers raise the same exceptions they would against a cluster.
    """
    mock_client = MagicMock()
    mock_client.default_namespace = "default"
    mock_client.timeout = 30
    mock_client.translate_api_exception.side_effect = KubernetesClient.translate_api_exception
    mock_client.make_retry_decorator.return_value = lambda f: f
    return mock_client
