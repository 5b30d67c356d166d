"""Unit tests for remote_client.retry_logic module."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from content_sync.remote_client.errors import APIAccessError, RemoteNotFoundError
from content_sync.remote_client.retry_logic import _is_rate_limit_error, retry_on_rate_limit


def http_error(status_code):
    response = requests.Response()
    response.status_code = status_code
    return requests.HTTPError(f"HTTP {status_code}", response=response)


class TestIsRateLimitError:
    """Test cases for _is_rate_limit_error function."""

    def test_detects_429_http_error(self):
        assert _is_rate_limit_error(http_error(429)) is True

    def test_ignores_other_http_errors(self):
        assert _is_rate_limit_error(http_error(500)) is False

    def test_detects_status_code_attribute(self):
        """_is_rate_limit_error should detect status_code=429 attribute."""
        error = Exception("API error")
        error.status_code = 429
        assert _is_rate_limit_error(error) is True

    def test_message_text_alone_is_not_a_rate_limit(self):
        """Only the status code decides, never the message."""
        assert _is_rate_limit_error(Exception("HTTP 429 Too Many Requests")) is False


class TestRetryOnRateLimit:
    """Test cases for retry_on_rate_limit function."""

    def test_success_on_first_attempt(self):
        mock_func = MagicMock(return_value="success")

        result = retry_on_rate_limit(mock_func, "arg1", kwarg1="value1")

        assert result == "success"
        mock_func.assert_called_once_with("arg1", kwarg1="value1")

    @patch('content_sync.remote_client.retry_logic.time.sleep')
    def test_retries_with_exponential_backoff(self, mock_sleep):
        """Two 429s then success waits 1s then 2s."""
        mock_func = MagicMock(side_effect=[http_error(429), http_error(429), "success"])

        result = retry_on_rate_limit(mock_func)

        assert result == "success"
        assert mock_func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch('content_sync.remote_client.retry_logic.time.sleep')
    def test_gives_up_after_three_retries(self, mock_sleep):
        """Persistent 429 raises APIAccessError after waiting 1s, 2s, 4s."""
        mock_func = MagicMock(side_effect=http_error(429))

        with pytest.raises(APIAccessError, match="after 3 retries"):
            retry_on_rate_limit(mock_func)

        assert mock_func.call_count == 4
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2, 4]

    @patch('content_sync.remote_client.retry_logic.time.sleep')
    def test_other_errors_are_not_retried(self, mock_sleep):
        mock_func = MagicMock(side_effect=RemoteNotFoundError("42"))

        with pytest.raises(RemoteNotFoundError):
            retry_on_rate_limit(mock_func)

        mock_func.assert_called_once()
        mock_sleep.assert_not_called()
