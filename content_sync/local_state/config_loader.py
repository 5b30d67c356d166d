"""YAML configuration loading and validation.

This module loads and saves the workspace configuration stored in
.content-sync/config.yaml. The presence of that file is what makes a
directory a content-sync workspace.
"""

import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .errors import ConfigError, FilesystemError, NotInitializedError
from .layout import WorkspacePaths
from .models import WorkspaceConfig


class ConfigLoader:
    """Handles configuration file loading, validation, and saving.

    Configuration file structure:
        url: https://cms.example.com
        content_dir: content
        media_dir: media
        max_workers: 4
        request_timeout: 30
        rename_window: 2.0
        lock_timeout: 30
    """

    REQUIRED_FIELDS = {'url'}

    # Field name -> accepted types
    OPTIONAL_FIELDS = {
        'content_dir': (str,),
        'media_dir': (str,),
        'max_workers': (int,),
        'request_timeout': (int, float),
        'rename_window': (int, float),
        'lock_timeout': (int, float),
    }

    @classmethod
    def load_workspace(cls, root: Union[str, Path]) -> WorkspaceConfig:
        """Load the configuration of the workspace at root.

        Raises:
            NotInitializedError: If root has no .content-sync/config.yaml
            FilesystemError: If the file cannot be read
            ConfigError: If the configuration is invalid
        """
        config_path = WorkspacePaths(Path(root)).config_path
        if not config_path.exists():
            raise NotInitializedError(str(root))
        return cls.load(str(config_path))

    @classmethod
    def load(cls, config_path: str) -> WorkspaceConfig:
        """Load and parse configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            WorkspaceConfig with parsed configuration

        Raises:
            FilesystemError: If file cannot be read
            ConfigError: If configuration is invalid or malformed
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise FilesystemError(config_path, 'read', 'Configuration file not found')
        except PermissionError:
            raise FilesystemError(config_path, 'read', 'Permission denied')
        except OSError as e:
            raise FilesystemError(config_path, 'read', str(e))

        try:
            config_dict = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {str(e)}")

        if config_dict is None:
            raise ConfigError("Configuration file is empty")

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Configuration must be a YAML dictionary, got {type(config_dict).__name__}"
            )

        return cls._parse_config(config_dict)

    @classmethod
    def save(cls, config_path: str, config: WorkspaceConfig) -> None:
        """Save configuration to a YAML file.

        Raises:
            ConfigError: If the configuration would not load back
            FilesystemError: If file cannot be written
        """
        config_dict = cls._to_dict(config)
        cls._parse_config(config_dict)
        yaml_str = yaml.safe_dump(
            config_dict,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        config_dir = os.path.dirname(config_path)
        if config_dir:
            try:
                os.makedirs(config_dir, exist_ok=True)
            except OSError as e:
                raise FilesystemError(config_dir, 'create_directory', str(e))

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(yaml_str)
        except PermissionError:
            raise FilesystemError(config_path, 'write', 'Permission denied')
        except OSError as e:
            raise FilesystemError(config_path, 'write', str(e))

    @classmethod
    def _to_dict(cls, config: WorkspaceConfig) -> Dict[str, Any]:
        return {
            'url': config.url,
            'content_dir': config.content_dir,
            'media_dir': config.media_dir,
            'max_workers': config.max_workers,
            'request_timeout': config.request_timeout,
            'rename_window': config.rename_window,
            'lock_timeout': config.lock_timeout,
        }

    @classmethod
    def _parse_config(cls, config_dict: Dict[str, Any]) -> WorkspaceConfig:
        """Parse and validate configuration dictionary.

        Raises:
            ConfigError: If configuration is invalid
        """
        missing_fields = cls.REQUIRED_FIELDS - set(config_dict.keys())
        if missing_fields:
            raise ConfigError(
                f"Missing required fields: {', '.join(sorted(missing_fields))}"
            )

        unknown_fields = set(config_dict) - cls.REQUIRED_FIELDS - set(cls.OPTIONAL_FIELDS)
        if unknown_fields:
            raise ConfigError(
                f"Unknown fields: {', '.join(sorted(unknown_fields))}"
            )

        url = config_dict['url']
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigError("must be an http(s) URL", 'url')

        kwargs: Dict[str, Any] = {'url': url.rstrip('/')}
        for name, types in cls.OPTIONAL_FIELDS.items():
            if name not in config_dict:
                continue
            value = config_dict[name]
            # bool is an int subclass but never a valid value here
            if isinstance(value, bool) or not isinstance(value, types):
                raise ConfigError(
                    f"must be {' or '.join(t.__name__ for t in types)}, "
                    f"got {type(value).__name__}",
                    name
                )
            if isinstance(value, (int, float)) and value <= 0:
                raise ConfigError("must be positive", name)
            if isinstance(value, str) and (not value or '/' in value or value.startswith('.')):
                raise ConfigError("must be a plain directory name", name)
            kwargs[name] = value

        return WorkspaceConfig(**kwargs)
