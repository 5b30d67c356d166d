"""Cooperative cancellation for long-running batches."""

import threading
import time
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """Cancellation signal with an optional deadline.

    Batches call raise_if_cancelled() between items; work already completed
    stays applied.

    Example:
        >>> token = CancellationToken(timeout=60)
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("cancelled")
        if self.timed_out:
            raise OperationCancelledError("timed out")
