"""Cancellation and deadline propagation for blocking remote calls."""

from __future__ import annotations

import threading
import time


class OperationCancelledError(Exception):
    """Raised when an operation is stopped or runs past its deadline."""


class OperationContext:
    """A stop signal plus an optional monotonic deadline.

    One context is created per reconcile; narrower contexts for individual
    remote calls are derived with ``with_timeout`` and share the stop event.
    """

    def __init__(
        self,
        stop_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> None:
        self.stop_event = stop_event or threading.Event()
        self.deadline = deadline

    def with_timeout(self, seconds: float) -> OperationContext:
        """Derive a context whose deadline is at most ``seconds`` from now."""
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return OperationContext(self.stop_event, deadline)

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self, default: float) -> float:
        """Seconds left before the deadline, capped at ``default``."""
        if self.deadline is None:
            return default
        return max(0.0, min(default, self.deadline - time.monotonic()))

    def check(self) -> None:
        """Raise if the context is cancelled or past its deadline.

        Raises:
            OperationCancelledError: If no further work should start.
        """
        if self.cancelled:
            raise OperationCancelledError("operation cancelled")
        if self.expired:
            raise OperationCancelledError("operation deadline exceeded")
