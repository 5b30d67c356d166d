"""Unit tests for sync_engine.cancellation module."""

from unittest.mock import patch

import pytest

from content_sync.sync_engine.cancellation import CancellationToken
from content_sync.sync_engine.errors import OperationCancelledError


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_fresh_token_is_not_cancelled(self):
        token = CancellationToken()

        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancellationToken()

        token.cancel()

        assert token.cancelled is True
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "cancelled"

    @patch('content_sync.sync_engine.cancellation.time.monotonic')
    def test_deadline(self, mock_monotonic):
        """Passing the deadline cancels with a timed out reason."""
        mock_monotonic.return_value = 100.0
        token = CancellationToken(timeout=5)

        mock_monotonic.return_value = 104.9
        assert token.timed_out is False

        mock_monotonic.return_value = 105.0
        assert token.timed_out is True
        with pytest.raises(OperationCancelledError, match="timed out"):
            token.raise_if_cancelled()
