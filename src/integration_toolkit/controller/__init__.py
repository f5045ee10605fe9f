"""Reconcilers and the kopf operator that drives them."""

from integration_toolkit.controller.integration_reconciler import IntegrationReconciler
from integration_toolkit.controller.manager import (
    ControllerComponents,
    ControllerManager,
    build_components,
    build_manager,
)
from integration_toolkit.controller.operator import (
    IntegrationHandlers,
    TargetHandlers,
    build_registry,
)
from integration_toolkit.controller.result import ReconcileResult
from integration_toolkit.controller.target_reconciler import TargetReconciler

__all__ = [
    "ControllerComponents",
    "ControllerManager",
    "IntegrationHandlers",
    "IntegrationReconciler",
    "ReconcileResult",
    "TargetHandlers",
    "TargetReconciler",
    "build_components",
    "build_manager",
    "build_registry",
]
