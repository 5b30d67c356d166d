"""Hash-based detection of local changes.

This module compares the workspace against the sync index and classifies
every tracked path as new, modified, deleted or renamed. There is no
reliable OS rename signal, so a rename is inferred when a file that vanished
from one path reappears, byte-identical, at another.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from content_sync.local_state.errors import FilesystemError
from content_sync.local_state.hasher import hash_file
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import CONTENT_DIR, MEDIA_DIR, classify, to_relative
from content_sync.local_state.models import (
    Entry,
    FileStatus,
    FileType,
    Modified,
    New,
    Synced,
    utc_now,
)
from content_sync.sync_engine.models import ChangeReport, RenamePair
from content_sync.sync_engine.relationship_manager import RelationshipManager

logger = logging.getLogger(__name__)

# Maximum parallel threads for hashing
DEFAULT_MAX_WORKERS = 4

# Deletion candidates by hash: (path, entry state before the deletion)
CandidateTable = Dict[str, List[Tuple[str, Entry]]]


class ChangeDetector:
    """Classifies local drift against the index and persists the result.

    Detection runs two passes. The existing-entry pass checks every indexed
    file: missing files become deletion candidates, changed synced files
    become modified. The directory-scan pass walks the tracked roots; a
    file not yet indexed whose hash matches an unclaimed deletion candidate
    of the same file type takes over that entry as a rename, anything else
    is new.

    Rename inference is hash-exact. A file renamed and edited in the same
    interval is reported as an unrelated delete and new file. When several
    candidates share a hash, the first unclaimed one in path order wins.

    Example:
        >>> detector = ChangeDetector(store, root="/work/site")
        >>> report = detector.detect_changes()
        >>> report.renamed
        [RenamePair(from_path='content/page/about/index.mdx', to_path='content/page/about-us/index.mdx')]
    """

    def __init__(
        self,
        store: IndexStore,
        root: Union[str, Path],
        relationships: Optional[RelationshipManager] = None,
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.store = store
        self.root = Path(root)
        self.relationships = relationships or RelationshipManager(store)
        self.content_dir = content_dir
        self.media_dir = media_dir
        self.max_workers = max_workers

    def detect_changes(self, tracked_roots: Optional[List[str]] = None) -> ChangeReport:
        """Classify local changes, update the index and return the report.

        Args:
            tracked_roots: Root-relative directories to scan (defaults to the
                content and media directories)

        Returns:
            ChangeReport listing every path with a pending status

        Raises:
            IndexCorruptedError: If the index cannot be loaded
            FilesystemError: If the index cannot be saved
        """
        roots = tracked_roots or [self.content_dir, self.media_dir]
        now = utc_now()

        with self.store.mutex:
            self.store.load()
            candidates = self._check_existing_entries(now)
            self._scan_directories(roots, candidates, now)

            unclaimed = sum(len(items) for items in candidates.values())
            if unclaimed:
                logger.info(f"{unclaimed} deleted file(s) not matched to a rename")

            self.relationships.repair_missing_links()
            self.store.save()
            report = self._build_report()

        logger.info(
            f"Change detection: {len(report.new)} new, {len(report.modified)} modified, "
            f"{len(report.deleted)} deleted, {len(report.renamed)} renamed, "
            f"{len(report.conflict)} in conflict"
        )
        return report

    def _check_existing_entries(self, now: str) -> CandidateTable:
        """Existing-entry pass; returns the deletion candidate side table."""
        candidates: CandidateTable = {}
        to_hash: List[str] = []

        for entry in self.store.entries():
            path = entry.local_path
            if (self.root / path).is_file():
                if entry.status in (FileStatus.DELETED, FileStatus.CONFLICT):
                    # Deleted files that reappeared are handled by the scan pass;
                    # conflicts wait for resolution
                    continue
                to_hash.append(path)
                continue

            if entry.status is FileStatus.DELETED:
                previous = _state_before_deletion(entry)
            else:
                previous = entry.copy()
                self.store.mark_deleted(path, now)
                logger.debug(f"  Missing: {path} (was {entry.status.value})")
            candidates.setdefault(entry.hash, []).append((path, previous))

        for path, digest in self._hash_files(to_hash).items():
            entry = self.store.get(path)
            if entry is None or digest is None or digest == entry.hash:
                continue
            if entry.status is FileStatus.SYNCED:
                entry.state = Modified(now)
                logger.debug(f"  Modified: {path}")
            entry.hash = digest
            self.store.touch()

        return candidates

    def _scan_directories(self, roots: List[str], candidates: CandidateTable, now: str) -> None:
        """Directory-scan pass: infer renames and record new files."""
        found: List[Tuple[str, FileType, Optional[str]]] = []
        for rel_path in self._walk(roots):
            existing = self.store.get(rel_path)
            if existing is not None and existing.status is not FileStatus.DELETED:
                continue
            classification = classify(rel_path, self.content_dir, self.media_dir)
            if classification is None:
                continue
            found.append((rel_path, classification[0], classification[1]))

        hashes = self._hash_files([path for path, _, _ in found])

        for rel_path, file_type, content_type in found:
            digest = hashes.get(rel_path)
            if digest is None:
                continue

            existing = self.store.get(rel_path)
            if existing is not None:
                self._restore_reappeared(existing, digest, candidates, now)
                continue

            match = _claim_candidate(candidates, digest, file_type)
            if match is not None:
                old_path, previous = match
                entry = self.store.apply_rename(old_path, rel_path, previous=previous, timestamp=now)
                if entry is not None and entry.status is FileStatus.RENAMED:
                    logger.info(f"  Renamed: {old_path} -> {rel_path}")
                else:
                    logger.info(f"  Restored: {rel_path} (moved back from {old_path})")
                continue

            self.store.put(rel_path, Entry(
                local_path=rel_path,
                file_type=file_type,
                hash=digest,
                state=New(now),
                content_type=content_type,
            ))
            logger.debug(f"  New: {rel_path}")

    def _restore_reappeared(
        self,
        entry: Entry,
        digest: str,
        candidates: CandidateTable,
        now: str,
    ) -> None:
        """A deleted entry's file is back at the same path."""
        path = entry.local_path
        for candidate_hash, items in candidates.items():
            remaining = [(p, e) for p, e in items if p != path]
            if len(remaining) != len(items):
                candidates[candidate_hash] = remaining

        previous = _state_before_deletion(entry)
        if previous.status is FileStatus.SYNCED:
            entry.state = Synced() if digest == previous.hash else Modified(now)
        elif previous.status is FileStatus.NEW:
            entry.state = New(now)
        else:
            # Pending local work survives the round trip
            entry.state = previous.state
        entry.hash = digest
        self.store.touch()
        logger.debug(f"  Reappeared: {path} ({entry.status.value})")

    def _walk(self, roots: List[str]) -> List[str]:
        """Root-relative paths of all files under the tracked roots, sorted."""
        paths: List[str] = []
        for root_name in roots:
            base = self.root / root_name
            if not base.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
                for filename in sorted(filenames):
                    if filename.startswith('.'):
                        continue
                    paths.append(to_relative(self.root, os.path.join(dirpath, filename)))
        return sorted(paths)

    def _hash_files(self, paths: List[str]) -> Dict[str, Optional[str]]:
        """Hash files on a bounded worker pool; unreadable files map to None."""
        results: Dict[str, Optional[str]] = {}
        if not paths:
            return results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(hash_file, self.root / path): path
                for path in paths
            }
            for future in as_completed(futures):
                path = futures[future]
                try:
                    results[path] = future.result()
                except FilesystemError as e:
                    logger.warning(f"Skipping unreadable file {path}: {e}")
                    results[path] = None
        return results

    def _build_report(self) -> ChangeReport:
        report = ChangeReport()
        for entry in self.store.entries():
            status = entry.status
            if status is FileStatus.NEW:
                report.new.append(entry.local_path)
            elif status is FileStatus.MODIFIED:
                report.modified.append(entry.local_path)
            elif status is FileStatus.DELETED:
                report.deleted.append(entry.local_path)
            elif status is FileStatus.RENAMED:
                report.renamed.append(RenamePair(entry.original_path, entry.local_path))
            elif status is FileStatus.CONFLICT:
                report.conflict.append(entry.local_path)
        return report


def _claim_candidate(
    candidates: CandidateTable,
    digest: str,
    file_type: FileType,
) -> Optional[Tuple[str, Entry]]:
    """Remove and return the first candidate with this hash and file type."""
    items = candidates.get(digest)
    if not items:
        return None
    for i, (path, previous) in enumerate(items):
        if previous.file_type is file_type:
            del items[i]
            return path, previous
    return None


def _state_before_deletion(entry: Entry) -> Entry:
    """The entry as it was before it was marked deleted in an earlier pass."""
    if entry.state_before_deletion is not None:
        return entry.state_before_deletion.copy()
    previous = entry.copy()
    previous.state = Synced() if entry.has_remote_id else New(entry.last_modified_local)
    return previous
