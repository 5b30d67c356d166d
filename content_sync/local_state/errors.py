"""Typed exception hierarchy for local workspace state errors.

Covers the persisted index, the workspace configuration and local file I/O.
All exceptions inherit from LocalStateError (and through it SyncError).
"""

from typing import Optional

from content_sync.remote_client.errors import SyncError


class LocalStateError(SyncError):
    """Base exception for all local state errors."""
    pass


class NotInitializedError(LocalStateError):
    """Raised when the directory has no sync configuration."""

    def __init__(self, root: str):
        super().__init__(
            f"{root} is not a content-sync workspace (run 'content-sync init' first)"
        )
        self.root = root


class FilesystemError(LocalStateError):
    """Raised when filesystem operations fail (read, write, permissions, etc)."""

    def __init__(self, file_path: str, operation: str, reason: Optional[str] = None):
        message = f"Filesystem operation '{operation}' failed for {file_path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.file_path = file_path
        self.operation = operation
        self.reason = reason


class IndexCorruptedError(LocalStateError):
    """Raised when the persisted index cannot be parsed.

    The store never replaces a corrupted index with an empty one; the
    operation aborts and the user has to repair or remove the file.
    """

    def __init__(self, index_path: str, reason: str):
        super().__init__(f"Index at {index_path} is corrupted: {reason}")
        self.index_path = index_path
        self.reason = reason


class OperationInProgressError(LocalStateError):
    """Raised when another pull or push holds the workspace lock."""

    def __init__(self, lock_path: str, timeout: float):
        super().__init__(
            f"Another sync operation holds {lock_path} (waited {timeout}s)"
        )
        self.lock_path = lock_path
        self.timeout = timeout


class ConfigError(LocalStateError):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, config_field: Optional[str] = None):
        if config_field:
            full_message = f"Configuration error in field '{config_field}': {message}"
        else:
            full_message = f"Configuration error: {message}"
        super().__init__(full_message)
        self.config_field = config_field
        self.original_message = message
