"""Outcome of a single reconcile pass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconcileResult:
    """What a reconciler wants after one pass over an object.

    ``requeue_after`` is when the next pass is due. ``retry`` marks a
    transient failure whose next pass should come after ``requeue_after``
    even when that is sooner than the periodic timer.
    """

    requeue_after: float | None = None
    retry: bool = False
    message: str = ""
