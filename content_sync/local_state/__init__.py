"""Local workspace state for content sync.

This package owns everything persisted locally: the sync index and its
entry model, the content hasher, workspace layout rules and the workspace
configuration.
"""

from .config_loader import ConfigLoader
from .errors import (
    ConfigError,
    FilesystemError,
    IndexCorruptedError,
    LocalStateError,
    NotInitializedError,
    OperationInProgressError,
)
from .hasher import hash_bytes, hash_file
from .index_store import IndexStore
from .layout import WorkspacePaths
from .models import (
    Conflict,
    Deleted,
    Entry,
    FileStatus,
    FileType,
    Index,
    Modified,
    New,
    Renamed,
    Synced,
    WorkspaceConfig,
)

__all__ = [
    'ConfigError',
    'ConfigLoader',
    'Conflict',
    'Deleted',
    'Entry',
    'FileStatus',
    'FileType',
    'FilesystemError',
    'Index',
    'IndexCorruptedError',
    'IndexStore',
    'LocalStateError',
    'Modified',
    'New',
    'NotInitializedError',
    'OperationInProgressError',
    'Renamed',
    'Synced',
    'WorkspaceConfig',
    'WorkspacePaths',
    'hash_bytes',
    'hash_file',
]
