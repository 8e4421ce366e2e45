"""Cooperative cancellation for long-running analyses."""

from __future__ import annotations

import threading
import time
from typing import Optional


class AnalysisCancelledError(Exception):
    """Raised inside a stage once its cancellation token has fired."""


class CancellationToken:
    """Shared flag plus optional deadline checked between engine stages.

    A token is passed down to every stage of one request; any holder may call
    `cancel()`, and stages poll `raise_if_cancelled()` at safe points.
    """

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._reason: str | None = None

    @classmethod
    def none(cls) -> "CancellationToken":
        return cls(timeout_seconds=None)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = self._reason or "analysis timeout exceeded"
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            where = f" during {stage}" if stage else ""
            raise AnalysisCancelledError(f"Analysis aborted{where}: {self._reason}")
