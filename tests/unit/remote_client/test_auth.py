"""Unit tests for remote_client.auth module."""

import json
import stat
from unittest.mock import MagicMock

import pytest

from content_sync.remote_client.auth import Authenticator, Credentials
from content_sync.remote_client.errors import AuthenticationRequiredError


class TestGetCredentials:
    """Test cases for Authenticator.get_credentials()."""

    def test_env_token_and_configured_url(self, monkeypatch):
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "env-token")

        creds = Authenticator(url="https://cms.example.com/").get_credentials()

        assert creds == Credentials(url="https://cms.example.com", access_token="env-token")

    def test_env_url_overrides_configured_url(self, monkeypatch):
        monkeypatch.setenv("CONTENT_SYNC_URL", "https://staging.example.com")
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "env-token")

        creds = Authenticator(url="https://cms.example.com").get_credentials()

        assert creds.url == "https://staging.example.com"

    def test_token_file_fallback(self, tmp_path):
        """token.json in the state directory is used when no env token is set."""
        (tmp_path / "token.json").write_text(json.dumps({"accessToken": "file-token"}))

        creds = Authenticator(url="https://cms.example.com", state_dir=tmp_path).get_credentials()

        assert creds.access_token == "file-token"

    def test_malformed_token_file_is_ignored(self, tmp_path):
        (tmp_path / "token.json").write_text("{oops")

        with pytest.raises(AuthenticationRequiredError) as exc_info:
            Authenticator(url="https://cms.example.com", state_dir=tmp_path).get_credentials()

        assert exc_info.value.endpoint == "https://cms.example.com"

    def test_missing_url(self, monkeypatch):
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "env-token")

        with pytest.raises(AuthenticationRequiredError, match="CONTENT_SYNC_URL"):
            Authenticator().get_credentials()

    def test_missing_token(self):
        with pytest.raises(AuthenticationRequiredError, match="no access token"):
            Authenticator(url="https://cms.example.com").get_credentials()


class TestRefresh:
    """Test cases for Authenticator.refresh()."""

    def test_refresh_hook_token_is_used_and_persisted(self, tmp_path, monkeypatch):
        """A hook-supplied token replaces the old one and is written to token.json."""
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "old-token")
        hook = MagicMock(return_value="new-token")
        auth = Authenticator(url="https://cms.example.com", state_dir=tmp_path, refresh_hook=hook)

        creds = auth.refresh()

        assert creds.access_token == "new-token"
        assert auth.get_credentials().access_token == "new-token"
        token_file = tmp_path / "token.json"
        assert json.loads(token_file.read_text()) == {"accessToken": "new-token"}
        assert stat.S_IMODE(token_file.stat().st_mode) == 0o600

    def test_refresh_without_hook_rereads_environment(self, monkeypatch):
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "old-token")
        auth = Authenticator(url="https://cms.example.com")
        monkeypatch.setenv("CONTENT_SYNC_TOKEN", "rotated-token")

        assert auth.refresh().access_token == "rotated-token"

    def test_refresh_hook_without_token_keeps_failing(self):
        auth = Authenticator(url="https://cms.example.com", refresh_hook=MagicMock(return_value=None))

        with pytest.raises(AuthenticationRequiredError):
            auth.refresh()
