"""
Cooperative cancellation for long sweeps.

A token is shared between the caller and the search loop. The loop checks it
between evaluation batches; the caller (a signal handler, another thread or a
time budget) flips it.
"""

import threading
import time
from typing import Optional

from utils.exceptions import SearchCancelledError


class CancellationToken:
    """Cancel flag with an optional wall-clock budget."""

    def __init__(self, max_seconds: Optional[float] = None):
        self._event = threading.Event()
        self.max_seconds = max_seconds
        self.started_at = time.monotonic()
        self.reason: Optional[str] = None

    @classmethod
    def from_hours(cls, max_hours: Optional[float]) -> "CancellationToken":
        return cls(max_seconds=max_hours * 3600 if max_hours else None)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.max_seconds is not None and time.monotonic() - self.started_at > self.max_seconds:
            self.cancel(f"time budget of {self.max_seconds:.0f}s exceeded")
            return True
        return False

    def raise_if_cancelled(self, completed_records=None) -> None:
        if self.cancelled:
            raise SearchCancelledError(f"Search cancelled: {self.reason}", completed_records)
