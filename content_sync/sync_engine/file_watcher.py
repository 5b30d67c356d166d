"""File system watching with rename coalescing.

Editors and file managers rarely report a move as a single event: a rename
often arrives as a delete followed by a create. This module watches the
workspace with watchdog and coalesces those pairs. A delete followed within
the rename window by a create whose content hash equals the deleted file's
indexed hash is applied to the index as a rename, through the same
IndexStore primitive the change detector uses.

Architecture:
    Observer Thread (watchdog):
        - Monitors the tracked roots recursively
        - Native move events are applied as renames directly
        - Deletes are held as pending for the rename window
        - Changes to the persisted index invalidate the store's cache

    FileEventCoalescer:
        - Thread-safe pending-delete table protected by threading.Lock
        - Injectable clock for deterministic tests
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from content_sync.local_state.errors import FilesystemError, OperationInProgressError
from content_sync.local_state.hasher import hash_file
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import (
    CONTENT_DIR,
    INDEX_FILE_NAME,
    MEDIA_DIR,
    STATE_DIR_NAME,
    classify,
    to_relative,
)
from content_sync.local_state.models import Entry, FileStatus, FileType

logger = logging.getLogger(__name__)

DEFAULT_RENAME_WINDOW = 2.0

# Seconds a watcher rename waits for a running pull or push
DEFAULT_LOCK_TIMEOUT = 5.0


@dataclass
class PendingDelete:
    """A deleted path waiting to be matched by a create."""
    path: str
    hash: str
    entry: Entry
    deleted_at: float


class FileEventCoalescer:
    """Turns delete+create pairs into index renames.

    Example:
        >>> coalescer = FileEventCoalescer(store, root)
        >>> coalescer.on_deleted("content/page/about/index.mdx")
        >>> coalescer.on_created("content/page/about-us/index.mdx")
        ('content/page/about/index.mdx', 'content/page/about-us/index.mdx')
    """

    def __init__(
        self,
        store: IndexStore,
        root: Union[str, Path],
        rename_window: float = DEFAULT_RENAME_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.store = store
        self.root = Path(root)
        self.lock_timeout = lock_timeout
        self.content_dir = content_dir
        self.media_dir = media_dir
        self.rename_window = rename_window
        self._clock = clock
        self._pending: Dict[str, PendingDelete] = {}
        self._lock = threading.Lock()

    @property
    def pending_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._pending)

    def on_deleted(self, rel_path: str) -> None:
        """Remember a deleted tracked path for the rename window."""
        entry = self.store.get(rel_path)
        if entry is None or entry.status is FileStatus.DELETED:
            return
        with self._lock:
            self._expire()
            self._pending[rel_path] = PendingDelete(
                path=rel_path,
                hash=entry.hash,
                entry=entry.copy(),
                deleted_at=self._clock(),
            )
        logger.debug(f"Pending delete: {rel_path}")

    def on_created(self, rel_path: str) -> Optional[Tuple[str, str]]:
        """Match a created file against pending deletes.

        Returns:
            (old_path, new_path) if a rename was applied, else None
        """
        if self.store.get(rel_path) is not None:
            return None
        try:
            digest = hash_file(self.root / rel_path)
        except FilesystemError as e:
            logger.debug(f"Cannot hash created file {rel_path}: {e}")
            return None

        with self._lock:
            self._expire()
            match = None
            for pending in sorted(self._pending.values(), key=lambda p: p.deleted_at):
                if pending.hash == digest and pending.entry.file_type is self._file_type(rel_path):
                    match = pending
                    break
            if match is None:
                return None
            del self._pending[match.path]

        return self.apply_move(match.path, rel_path)

    def apply_move(self, old_path: str, new_path: str) -> Optional[Tuple[str, str]]:
        """Apply a rename to the index and persist it under the workspace lock.

        If a pull or push holds the lock past lock_timeout the move is skipped;
        the next change detection infers it from the hashes instead.
        """
        try:
            with self.store.operation_lock(self.lock_timeout), self.store.mutex:
                entry = self.store.apply_rename(old_path, new_path)
                if entry is None:
                    return None
                self.store.save()
        except OperationInProgressError as e:
            logger.warning(f"Skipping watcher rename {old_path} -> {new_path}: {e}")
            return None
        logger.info(f"Watcher rename: {old_path} -> {new_path}")
        return old_path, new_path

    def flush_expired(self) -> List[str]:
        """Drop pending deletes older than the window; returns their paths.

        Expired deletes are left for the change detector, which reports them
        as deletions on the next scan.
        """
        with self._lock:
            return self._expire()

    def _file_type(self, rel_path: str) -> Optional[FileType]:
        classification = classify(rel_path, self.content_dir, self.media_dir)
        return classification[0] if classification else None

    def _expire(self) -> List[str]:
        now = self._clock()
        expired = [
            path for path, pending in self._pending.items()
            if now - pending.deleted_at > self.rename_window
        ]
        for path in expired:
            del self._pending[path]
        return expired


class WorkspaceEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for tracked files to the coalescer."""

    def __init__(self, watcher: 'WorkspaceWatcher'):
        self.watcher = watcher

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher._on_deleted(Path(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher._on_created(Path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher._on_moved(Path(event.src_path), Path(event.dest_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher._on_modified(Path(event.src_path))


class WorkspaceWatcher:
    """Watches a workspace and keeps the index aware of moves and external edits."""

    def __init__(
        self,
        store: IndexStore,
        root: Union[str, Path],
        rename_window: float = DEFAULT_RENAME_WINDOW,
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.root = Path(root).resolve()
        self.store = store
        self.coalescer = FileEventCoalescer(
            store, self.root, rename_window,
            content_dir=content_dir, media_dir=media_dir, lock_timeout=lock_timeout,
        )
        self.content_dir = content_dir
        self.media_dir = media_dir
        self.observer = Observer()
        self._running = False

    def start(self) -> None:
        """Start the observer thread."""
        if self._running:
            logger.warning("Workspace watcher already running")
            return
        self.observer.schedule(WorkspaceEventHandler(self), str(self.root), recursive=True)
        self.observer.start()
        self._running = True
        logger.info(f"Watching {self.root}")

    def stop(self) -> None:
        """Stop the observer thread and wait for it."""
        if not self._running:
            return
        self._running = False
        self.observer.stop()
        self.observer.join()
        logger.info("Watcher stopped")

    def _relative(self, path: Path) -> Optional[str]:
        try:
            rel_path = to_relative(self.root, path.resolve())
        except ValueError:
            return None
        if rel_path.startswith('..'):
            return None
        return rel_path

    def _is_index(self, rel_path: str) -> bool:
        return rel_path == f"{STATE_DIR_NAME}/{INDEX_FILE_NAME}"

    def _is_tracked(self, rel_path: str) -> bool:
        return classify(rel_path, self.content_dir, self.media_dir) is not None

    def _on_deleted(self, path: Path) -> None:
        rel_path = self._relative(path)
        if rel_path and self._is_tracked(rel_path):
            self.coalescer.on_deleted(rel_path)

    def _on_created(self, path: Path) -> None:
        rel_path = self._relative(path)
        if rel_path is None:
            return
        if self._is_index(rel_path):
            self._on_index_changed()
        elif self._is_tracked(rel_path):
            self.coalescer.on_created(rel_path)

    def _on_moved(self, src: Path, dest: Path) -> None:
        src_rel = self._relative(src)
        dest_rel = self._relative(dest)
        if dest_rel and self._is_index(dest_rel):
            # Atomic saves replace the index through a rename
            self._on_index_changed()
            return
        if src_rel and dest_rel and self._is_tracked(src_rel) and self._is_tracked(dest_rel):
            self.coalescer.apply_move(src_rel, dest_rel)

    def _on_modified(self, path: Path) -> None:
        rel_path = self._relative(path)
        if rel_path and self._is_index(rel_path):
            self._on_index_changed()

    def _on_index_changed(self) -> None:
        # Our own saves update the stored signature, so only external edits match
        if self.store.changed_on_disk():
            logger.info("Index edited outside this process, invalidating cache")
            self.store.invalidate()
