"""One-refresh-per-batch authentication retry."""

import logging
import threading
from typing import Callable, TypeVar

from content_sync.remote_client.auth import Authenticator
from content_sync.remote_client.errors import AuthenticationRequiredError
from content_sync.sync_engine.errors import BatchAbortedError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BatchAuthRetry:
    """Runs remote calls, refreshing the credential at most once per batch.

    The first AuthenticationRequiredError triggers a refresh and a retry of
    the failed call. Any later authentication failure in the same batch
    raises BatchAbortedError.

    Example:
        >>> retry = BatchAuthRetry(authenticator)
        >>> item = retry.call("create_content(page/about)", api.create, item)
    """

    def __init__(self, authenticator: Authenticator):
        self._authenticator = authenticator
        self._lock = threading.Lock()
        self.refreshed = False

    def reset(self) -> None:
        """Start a new batch: the next authentication failure may refresh again."""
        with self._lock:
            self.refreshed = False

    def call(self, operation: str, func: Callable[..., T], *args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except AuthenticationRequiredError as e:
            with self._lock:
                if self.refreshed:
                    logger.error(f"Authentication failed again during {operation}")
                    raise BatchAbortedError(operation) from e
                self.refreshed = True
                logger.warning(f"Authentication rejected during {operation}, refreshing credential")
                try:
                    self._authenticator.refresh()
                except AuthenticationRequiredError as refresh_error:
                    raise BatchAbortedError(operation) from refresh_error

        try:
            return func(*args, **kwargs)
        except AuthenticationRequiredError as e:
            logger.error(f"Authentication failed again during {operation}")
            raise BatchAbortedError(operation) from e
