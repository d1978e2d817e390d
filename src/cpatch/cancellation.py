"""Cooperative cancellation shared by the pipeline stages."""

from __future__ import annotations

import threading

from .errors import TaskCancelledError

__all__ = ["CancellationToken"]


class CancellationToken:
    """Flag checked at every blocking boundary of a task."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise TaskCancelledError(f"Task cancelled before {stage}.", details={"stage": stage})
