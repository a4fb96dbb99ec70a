"""Cooperative cancellation for pipeline calls."""

from __future__ import annotations

import threading
import time

from facebox.core.errors import PipelineTimeoutError


class CancellationToken:
    """A flag plus optional deadline, checked only at stage boundaries.

    Nothing is ever interrupted mid-operation: work between two checkpoints
    always runs to completion.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise PipelineTimeoutError(f"Call abandoned before {stage}")
