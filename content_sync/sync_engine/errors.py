"""Typed exceptions raised inside a reconciliation batch."""

from content_sync.remote_client.errors import SyncError


class SyncEngineError(SyncError):
    """Base exception for sync engine errors."""
    pass


class BatchAbortedError(SyncEngineError):
    """Raised when authentication fails again after the batch's one refresh."""

    def __init__(self, operation: str):
        super().__init__(
            f"Authentication failed again during {operation}; aborting remaining items"
        )
        self.operation = operation


class OperationCancelledError(SyncEngineError):
    """Raised when the caller cancels a running pull or push."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Operation {reason}")
        self.reason = reason
