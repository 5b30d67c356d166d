"""Typed exception hierarchy for CLI-related errors.

Errors raised by the lower packages propagate to the CLI unchanged; the
classes here cover failures that only exist at the command level.
"""

from content_sync.remote_client.errors import SyncError


class CLIError(SyncError):
    """Base exception for all CLI-related errors."""
    pass


class InitError(CLIError):
    """Raised when workspace initialization fails."""

    def __init__(self, message: str):
        super().__init__(message)
