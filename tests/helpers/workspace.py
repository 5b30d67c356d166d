"""Helpers for building workspaces on disk in tests."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from content_sync.local_state.config_loader import ConfigLoader
from content_sync.local_state.layout import WorkspacePaths
from content_sync.local_state.models import WorkspaceConfig

DEFAULT_URL = "https://cms.example.com"


def init_workspace(root: Path, url: str = DEFAULT_URL) -> Path:
    """Write a minimal config.yaml so root is a workspace."""
    ConfigLoader.save(str(WorkspacePaths(root).config_path), WorkspaceConfig(url=url))
    (root / "content").mkdir(parents=True, exist_ok=True)
    (root / "media").mkdir(parents=True, exist_ok=True)
    return root


def write_file(root: Path, rel_path: str, data) -> Path:
    """Write text or bytes to root/rel_path, creating parent folders."""
    target = root / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        target.write_text(data, encoding="utf-8")
    else:
        target.write_bytes(data)
    return target


def write_item(
    root: Path,
    content_type: str,
    slug: str,
    body: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Write body and metadata of one content item; returns the body path."""
    folder = f"content/{content_type}/{slug}"
    write_file(root, f"{folder}/index.mdx", body)
    if metadata is not None:
        write_file(root, f"{folder}/index.json", json.dumps(metadata, indent=2) + "\n")
    return f"{folder}/index.mdx"


def read_json(root: Path, rel_path: str) -> Dict[str, Any]:
    return json.loads((root / rel_path).read_text(encoding="utf-8"))
