"""InitCommand for workspace initialization.

This module implements the `init` command: it validates the remote URL,
writes .content-sync/config.yaml, creates the content and media roots and
the empty versioned index.
"""

import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from content_sync.local_state.config_loader import ConfigLoader
from content_sync.local_state.errors import ConfigError, FilesystemError
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import CONTENT_DIR, MEDIA_DIR, WorkspacePaths
from content_sync.local_state.models import WorkspaceConfig
from .errors import InitError

logger = logging.getLogger(__name__)


class InitCommand:
    """Handles initialization of a content-sync workspace.

    Example:
        >>> init = InitCommand(root="./site")
        >>> init.run(url="https://cms.example.com")
        PosixPath('site/.content-sync/config.yaml')
    """

    def __init__(self, root: Union[str, Path] = "."):
        self.root = Path(root)
        self.paths = WorkspacePaths(self.root)

    @property
    def config_path(self) -> Path:
        return self.paths.config_path

    def run(
        self,
        url: str,
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
        force: bool = False,
    ) -> Path:
        """Create the workspace configuration and state directory.

        Args:
            url: Base URL of the remote content API
            content_dir: Name of the content root directory
            media_dir: Name of the shared media directory
            force: Overwrite an existing configuration

        Returns:
            Path of the written config file

        Raises:
            InitError: If the URL is invalid, the workspace is already
                initialized (without force) or files cannot be created
        """
        self._validate_url(url)

        if self.config_path.exists() and not force:
            raise InitError(
                f"Workspace already initialized: {self.config_path}\n"
                "Use --force to overwrite the configuration."
            )

        config = WorkspaceConfig(url=url.rstrip('/'), content_dir=content_dir, media_dir=media_dir)
        try:
            ConfigLoader.save(str(self.config_path), config)
            for directory in config.tracked_roots:
                (self.root / directory).mkdir(parents=True, exist_ok=True)
            IndexStore(self.root).load()
        except ConfigError as e:
            raise InitError(f"Invalid configuration: {e}")
        except FilesystemError as e:
            raise InitError(f"Failed to create workspace: {e}")
        except OSError as e:
            raise InitError(f"Failed to create workspace directories: {e}")

        logger.info(f"Initialized workspace at {self.root} for {config.url}")
        return self.config_path

    def _validate_url(self, url: str) -> None:
        """Validate that a URL has proper structure.

        Raises:
            InitError: If URL is malformed or missing required components
        """
        if not url or not url.strip():
            raise InitError("URL cannot be empty")

        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https'):
            raise InitError(
                f"Invalid URL scheme: '{parsed.scheme or '(missing)'}'\n"
                f"URL must start with http:// or https://"
            )
        if not parsed.netloc or not parsed.netloc.strip():
            raise InitError(
                "Invalid URL: missing domain name\n"
                "URL must include a domain (e.g., cms.example.com)"
            )
