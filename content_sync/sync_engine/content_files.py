"""Reading and writing the local files of one content item."""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Tuple

from content_sync.local_state.errors import FilesystemError
from content_sync.local_state.layout import CONTENT_DIR, body_path, content_folder, metadata_path

logger = logging.getLogger(__name__)

REQUIRED_METADATA_FIELDS = ('title', 'description', 'author')

# One folder name: content type or slug of a scaffolded item
SEGMENT_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')


def read_bytes(root: Path, rel_path: str) -> bytes:
    try:
        return (root / rel_path).read_bytes()
    except OSError as e:
        raise FilesystemError(rel_path, 'read', str(e))


def read_text(root: Path, rel_path: str) -> str:
    try:
        return read_bytes(root, rel_path).decode('utf-8')
    except UnicodeDecodeError as e:
        raise FilesystemError(rel_path, 'read', f"not valid UTF-8: {e}")


def read_metadata(root: Path, rel_path: str) -> Dict[str, Any]:
    """Parse a metadata file.

    Raises:
        FilesystemError: If the file cannot be read or is not a JSON object
    """
    text = read_text(root, rel_path)
    try:
        data = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as e:
        raise FilesystemError(rel_path, 'parse', f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise FilesystemError(rel_path, 'parse', "metadata must be a JSON object")
    return data


def dump_metadata(metadata: Dict[str, Any]) -> bytes:
    """Canonical on-disk form of a metadata file."""
    return (json.dumps(metadata, indent=2, ensure_ascii=False) + '\n').encode('utf-8')


def write_if_changed(root: Path, rel_path: str, data: bytes) -> bool:
    """Atomically write data unless the file already holds exactly these bytes.

    Returns:
        True if the file was written

    Raises:
        FilesystemError: If the file cannot be written
    """
    target = root / rel_path
    try:
        if target.is_file() and target.read_bytes() == data:
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix='.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    except OSError as e:
        raise FilesystemError(rel_path, 'write', str(e))
    logger.debug(f"Wrote {rel_path} ({len(data)} bytes)")
    return True


def remove_file(root: Path, rel_path: str) -> bool:
    """Delete a file and prune empty parent folders up to root."""
    target = root / rel_path
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FilesystemError(rel_path, 'delete', str(e))

    parent = target.parent
    while parent != root and root in parent.parents:
        try:
            parent.rmdir()
        except OSError:
            break
        parent = parent.parent
    return True


def validate_metadata(metadata: Dict[str, Any]) -> Dict[str, List[str]]:
    """Field errors for metadata that the remote would reject."""
    errors: Dict[str, List[str]] = {}
    for name in REQUIRED_METADATA_FIELDS:
        value = metadata.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors[name] = [f"{name} is required"]
    tags = metadata.get('tags')
    if tags is not None and not isinstance(tags, list):
        errors['tags'] = ["tags must be a list"]
    return errors


def scaffold_item(
    root: Path,
    content_type: str,
    slug: str,
    title: str,
    content_dir: str = CONTENT_DIR,
) -> Tuple[str, str]:
    """Create the body and metadata files of a new content item.

    The metadata holds empty description and author fields; they must be
    filled in before the item passes validation and can be pushed.

    Returns:
        (body_path, metadata_path), relative to root

    Raises:
        ValueError: If type, slug or title is empty or type/slug is not a
            single path segment
        FilesystemError: If the item already exists or cannot be written
    """
    for label, value in (('type', content_type), ('slug', slug)):
        if not SEGMENT_PATTERN.match(value or ''):
            raise ValueError(f"Invalid {label} '{value}': use letters, digits, '-' and '_'")
    if not title or not title.strip():
        raise ValueError("title must not be empty")

    body_rel = body_path(content_type, slug, content_dir)
    meta_rel = metadata_path(content_type, slug, content_dir)
    if (root / body_rel).exists() or (root / meta_rel).exists():
        raise FilesystemError(content_folder(content_type, slug, content_dir), 'create', "content item already exists")

    metadata = {
        'title': title.strip(),
        'description': '',
        'author': '',
        'language': 'en',
        'tags': [],
        'category': '',
        'allowComments': True,
    }
    write_if_changed(root, body_rel, f"# {title.strip()}\n\nEnter your content here...\n".encode('utf-8'))
    write_if_changed(root, meta_rel, dump_metadata(metadata))
    logger.info(f"Created content item {content_type}/{slug}")
    return body_rel, meta_rel
