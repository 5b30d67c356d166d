"""Remote content API client library.

This package provides authentication, HTTP error translation and rate limit
handling for the remote content-management API consumed by the sync engine.
"""

from .api_wrapper import ContentAPI, MediaAPI, media_path_from_url, media_url
from .auth import Authenticator, Credentials
from .errors import (
    APIAccessError,
    APIUnreachableError,
    AuthenticationRequiredError,
    RemoteError,
    RemoteNotFoundError,
    SyncError,
    ValidationRejectedError,
)
from .models import ContentItem

__all__ = [
    'APIAccessError',
    'APIUnreachableError',
    'Authenticator',
    'AuthenticationRequiredError',
    'ContentAPI',
    'ContentItem',
    'Credentials',
    'MediaAPI',
    'RemoteError',
    'RemoteNotFoundError',
    'SyncError',
    'ValidationRejectedError',
    'media_path_from_url',
    'media_url',
]
