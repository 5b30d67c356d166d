"""Authentication module for loading remote API credentials.

This module loads the remote API base URL and bearer token from environment
variables using python-dotenv, falling back to the token file written next to
the workspace configuration. The credential refresh flow itself lives outside
this package; a refresh hook can be injected to obtain a fresh token.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from dotenv import load_dotenv

from .errors import AuthenticationRequiredError

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "token.json"


class Credentials(NamedTuple):
    """Remote API credentials."""
    url: str
    access_token: str


class Authenticator:
    """Loads and refreshes the bearer credential for the remote API.

    Credentials are never logged. Sources, in priority order:

        CONTENT_SYNC_URL: Remote base URL (overrides the configured url)
        CONTENT_SYNC_TOKEN: Bearer token
        <state_dir>/token.json: {"accessToken": "..."} written by the login flow

    Raises:
        AuthenticationRequiredError: If no URL or token can be found

    Example:
        >>> auth = Authenticator(url="https://cms.example.com")
        >>> creds = auth.get_credentials()
        >>> print(f"Connecting to {creds.url}")
    """

    def __init__(
        self,
        url: Optional[str] = None,
        state_dir: Optional[Path] = None,
        refresh_hook: Optional[Callable[[], Optional[str]]] = None,
    ):
        """Initialize the authenticator by loading environment variables from .env file.

        Args:
            url: Base URL from the workspace configuration
            state_dir: Directory holding token.json (usually <root>/.content-sync)
            refresh_hook: Callable returning a fresh token, or None if it cannot
        """
        load_dotenv()
        self._url = url
        self._state_dir = Path(state_dir) if state_dir else None
        self._refresh_hook = refresh_hook
        self._refreshed_token: Optional[str] = None

    @property
    def token_path(self) -> Optional[Path]:
        if self._state_dir is None:
            return None
        return self._state_dir / TOKEN_FILE_NAME

    def get_credentials(self) -> Credentials:
        """Get the current credentials.

        Returns:
            Credentials: A named tuple containing url and access_token

        Raises:
            AuthenticationRequiredError: If the URL or the token is missing
        """
        url = os.getenv('CONTENT_SYNC_URL') or self._url
        token = self._refreshed_token or os.getenv('CONTENT_SYNC_TOKEN') or self._read_token_file()

        if not url:
            raise AuthenticationRequiredError("unknown", "CONTENT_SYNC_URL is not set")
        if not token:
            raise AuthenticationRequiredError(url, "no access token configured")

        return Credentials(url=url.rstrip('/'), access_token=token)

    def refresh(self) -> Credentials:
        """Obtain a fresh credential after the remote rejected the current one.

        Re-reads the .env file with override so a token rotated on disk is
        picked up, then asks the refresh hook (if any) for a new token.

        Returns:
            Credentials: The refreshed credentials

        Raises:
            AuthenticationRequiredError: If no credential is available afterwards
        """
        logger.info("Refreshing remote API credentials")
        load_dotenv(override=True)

        if self._refresh_hook is not None:
            token = self._refresh_hook()
            if token:
                self._refreshed_token = token
                self._write_token_file(token)
            else:
                logger.warning("Credential refresh hook returned no token")

        return self.get_credentials()

    def _read_token_file(self) -> Optional[str]:
        path = self.token_path
        if path is None or not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read token file {path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data.get('accessToken')

    def _write_token_file(self, token: str) -> None:
        path = self.token_path
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump({'accessToken': token}, f)
            os.chmod(path, 0o600)
        except OSError as e:
            logger.warning(f"Could not persist refreshed token to {path}: {e}")
