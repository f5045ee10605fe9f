"""Observability hooks."""

from integration_toolkit.observability.metrics import ControllerMetrics

__all__ = ["ControllerMetrics"]
