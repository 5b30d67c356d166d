"""Workspace layout rules.

Maps between relative paths and their roles:

    content/<type>/<slug>/index.mdx    body (content)
    content/<type>/<slug>/index.json   metadata
    content/<type>/<slug>/<file>       media co-located with one item
    media/<scope...>/<file>            shared media

Remote media live at /api/media/<remote path>, where the remote path is the
local path without its first component.
"""

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple, Union

from .models import FileType

STATE_DIR_NAME = ".content-sync"
CONFIG_FILE_NAME = "config.yaml"
INDEX_FILE_NAME = "index.json"
LOCK_FILE_NAME = "sync.lock"

CONTENT_DIR = "content"
MEDIA_DIR = "media"
BODY_FILE_NAME = "index.mdx"
METADATA_FILE_NAME = "index.json"
BODY_SUFFIX = ".mdx"
METADATA_SUFFIX = ".json"

MEDIA_EXTENSIONS = frozenset({
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.avif', '.ico', '.bmp', '.tiff',
    '.mp4', '.webm', '.mov', '.mp3', '.wav', '.pdf',
})


@dataclass(frozen=True)
class WorkspacePaths:
    """Absolute locations of the workspace state files."""
    root: Path

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR_NAME

    @property
    def config_path(self) -> Path:
        return self.state_dir / CONFIG_FILE_NAME

    @property
    def index_path(self) -> Path:
        return self.state_dir / INDEX_FILE_NAME

    @property
    def lock_path(self) -> Path:
        return self.state_dir / LOCK_FILE_NAME


def is_media_name(name: str) -> bool:
    return PurePosixPath(name).suffix.lower() in MEDIA_EXTENSIONS


def to_relative(root: Union[str, Path], path: Union[str, Path]) -> str:
    """Path relative to root with POSIX separators."""
    return Path(os.path.relpath(path, root)).as_posix()


def classify(
    rel_path: str,
    content_dir: str = CONTENT_DIR,
    media_dir: str = MEDIA_DIR,
) -> Optional[Tuple[FileType, Optional[str]]]:
    """Classify a relative path by location and extension.

    Args:
        rel_path: Path relative to the workspace root
        content_dir: Name of the content root
        media_dir: Name of the shared media root

    Returns:
        (file_type, content_type) or None if the file is not tracked.
        content_type is the first directory below the content root, and
        None for shared media.

    Example:
        >>> classify("content/page/about/index.mdx")
        (<FileType.CONTENT: 'content'>, 'page')
        >>> classify("media/shared/logo.png")
        (<FileType.MEDIA: 'media'>, None)
    """
    parts = PurePosixPath(rel_path).parts
    if any(part.startswith('.') for part in parts):
        return None
    suffix = PurePosixPath(rel_path).suffix.lower()

    if len(parts) >= 3 and parts[0] == content_dir:
        content_type = parts[1]
        if suffix == BODY_SUFFIX:
            return FileType.CONTENT, content_type
        if suffix in MEDIA_EXTENSIONS:
            return FileType.MEDIA, content_type
        if suffix == METADATA_SUFFIX:
            return FileType.METADATA, content_type
        return None

    if len(parts) >= 2 and parts[0] == media_dir:
        return FileType.MEDIA, None

    return None


def content_folder(content_type: str, slug: str, content_dir: str = CONTENT_DIR) -> str:
    return f"{content_dir}/{content_type}/{slug}"


def body_path(content_type: str, slug: str, content_dir: str = CONTENT_DIR) -> str:
    return f"{content_folder(content_type, slug, content_dir)}/{BODY_FILE_NAME}"


def metadata_path(content_type: str, slug: str, content_dir: str = CONTENT_DIR) -> str:
    return f"{content_folder(content_type, slug, content_dir)}/{METADATA_FILE_NAME}"


def type_and_slug(rel_path: str) -> Tuple[str, str]:
    """(content_type, slug) of a body or metadata path.

    Example:
        >>> type_and_slug("content/post/hello/index.mdx")
        ('post', 'hello')
    """
    parts = PurePosixPath(rel_path).parts
    if len(parts) < 4:
        raise ValueError(f"Not a content item path: {rel_path}")
    return parts[1], "/".join(parts[2:-1])


def counterpart_path(rel_path: str) -> Optional[str]:
    """Structural body <-> metadata counterpart in the same folder."""
    path = PurePosixPath(rel_path)
    if path.suffix == BODY_SUFFIX:
        return str(path.with_suffix(METADATA_SUFFIX))
    if path.suffix == METADATA_SUFFIX:
        return str(path.with_suffix(BODY_SUFFIX))
    return None


def media_remote_path(rel_path: str) -> str:
    """Remote media path ("<scope>/<file>") of a local media file."""
    parts = PurePosixPath(rel_path).parts
    return "/".join(parts[1:])


def media_scope_and_name(rel_path: str) -> Tuple[str, str]:
    """(scope, filename) under which a local media file is uploaded."""
    scope, _, name = media_remote_path(rel_path).rpartition('/')
    return scope, name


def local_media_path(
    remote_path: str,
    owner_scope: Optional[str] = None,
    content_dir: str = CONTENT_DIR,
    media_dir: str = MEDIA_DIR,
) -> str:
    """Local path for a remote media path.

    Media scoped to the owning item ("<type>/<slug>/...") live beside it under
    the content root; everything else goes to the shared media root.
    """
    remote_path = remote_path.strip('/')
    if owner_scope and remote_path.startswith(owner_scope.strip('/') + '/'):
        return f"{content_dir}/{remote_path}"
    return f"{media_dir}/{remote_path}"


def relative_reference(from_folder: str, target_path: str) -> str:
    """Reference to target_path as written inside a file in from_folder."""
    return posixpath.relpath(target_path, from_folder)


def resolve_reference(from_folder: str, reference: str) -> str:
    """Inverse of relative_reference: workspace-relative path of a reference."""
    return posixpath.normpath(posixpath.join(from_folder, reference))
