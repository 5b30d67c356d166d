"""Typed exception hierarchy for remote content API errors.

This module defines the exceptions raised by the remote client library.
All exceptions inherit from SyncError so callers can catch any
application-level failure in one place, and each carries the context
(endpoint, resource, field errors) needed to report it.
"""

from typing import Dict, List, Optional


class SyncError(Exception):
    """Base exception for all content-sync errors.

    Use this to catch any application-level error from the sync tool.
    """
    pass


class RemoteError(SyncError):
    """Base exception for all remote API errors."""
    pass


class AuthenticationRequiredError(RemoteError):
    """Raised when the remote rejects the credential or none is configured."""

    def __init__(self, endpoint: str, reason: Optional[str] = None):
        message = f"Authentication required for {endpoint}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.endpoint = endpoint
        self.reason = reason


class ValidationRejectedError(RemoteError):
    """Raised when the remote rejects a content item as invalid.

    Attributes:
        operation: Remote operation that was rejected (e.g. "create")
        title: Problem title reported by the remote
        field_errors: Mapping of field name to the list of messages for it
    """

    def __init__(
        self,
        operation: str,
        title: str = "Validation failed",
        field_errors: Optional[Dict[str, List[str]]] = None,
    ):
        self.operation = operation
        self.title = title
        self.field_errors = field_errors or {}
        message = f"{operation} rejected: {title}"
        if self.field_errors:
            details = "; ".join(
                f"{name}: {', '.join(msgs)}"
                for name, msgs in sorted(self.field_errors.items())
            )
            message += f" ({details})"
        super().__init__(message)


class RemoteNotFoundError(RemoteError):
    """Raised when a remote content item or media file does not exist."""

    def __init__(self, resource: str):
        super().__init__(f"Remote resource {resource} not found")
        self.resource = resource


class APIUnreachableError(RemoteError):
    """Raised when the remote API is not available or unreachable."""

    def __init__(self, endpoint: str):
        super().__init__(f"API is not available at {endpoint}")
        self.endpoint = endpoint


class APIAccessError(RemoteError):
    """Raised when API access fails after retries or for an unexpected status."""

    def __init__(self, message: str = "Remote API failure (after 3 retries)"):
        super().__init__(message)
