"""Bidirectional links between related index entries.

A body file and its metadata file are one logical content item; both list
each other in related_entry_ids. Media files referenced by either are linked
to it as well. The body/metadata counterpart is derived from the path alone,
so links missing from entries created out of band can be repaired.
"""

import logging
from typing import Optional

from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import counterpart_path
from content_sync.local_state.models import FileType, Index

logger = logging.getLogger(__name__)


class RelationshipManager:
    """Maintains related_entry_ids across the index.

    Example:
        >>> manager = RelationshipManager(store)
        >>> manager.find_counterpart("content/page/about/index.mdx")
        'content/page/about/index.json'
        >>> manager.repair_missing_links()
        2
    """

    def __init__(self, store: IndexStore):
        self.store = store

    def link(self, path_a: str, path_b: str) -> bool:
        """Record a bidirectional link between two indexed paths.

        Returns:
            True if either side gained a link, False if nothing changed or
            one of the paths is not in the index
        """
        entry_a = self.store.get(path_a)
        entry_b = self.store.get(path_b)
        if entry_a is None or entry_b is None or path_a == path_b:
            logger.debug(f"Cannot link {path_a} <-> {path_b}: not both indexed")
            return False
        added_a = entry_a.add_related(path_b)
        added_b = entry_b.add_related(path_a)
        if added_a or added_b:
            self.store.touch()
            return True
        return False

    def link_media(self, owner_path: str, media_path: str) -> bool:
        """Link a media file to the content item that references it.

        Args:
            owner_path: Body or metadata path of the referencing item
            media_path: Indexed path of the media file

        Returns:
            True if a link was added
        """
        entry = self.store.get(media_path)
        if entry is None or entry.file_type is not FileType.MEDIA:
            logger.debug(f"Not linking {media_path}: not an indexed media file")
            return False
        return self.link(owner_path, media_path)

    def find_counterpart(self, path: str) -> Optional[str]:
        """Structural counterpart of a body or metadata path, or None for media."""
        return counterpart_path(path)

    def repair_missing_links(self, index: Optional[Index] = None) -> int:
        """Add every missing body <-> metadata link where both sides are indexed.

        Args:
            index: Index to repair; defaults to the store's current index

        Returns:
            Number of content items whose link was added or completed
        """
        index = index if index is not None else self.store.load()
        repaired = 0
        for path in sorted(index.entries):
            entry = index.entries[path]
            if entry.file_type is not FileType.CONTENT:
                continue
            counterpart = self.find_counterpart(path)
            if counterpart is None:
                continue
            other = index.entries.get(counterpart)
            if other is None or other.file_type is not FileType.METADATA:
                continue
            added = entry.add_related(counterpart)
            added = other.add_related(path) or added
            if added:
                repaired += 1

        if repaired:
            self.store.touch()
            logger.info(f"Repaired {repaired} missing content/metadata links")
        return repaired
