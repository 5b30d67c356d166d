"""Durable store for the sync index.

The index lives in .content-sync/index.json as one JSON document. This module
loads it (creating an empty versioned index on first use), saves it
atomically with stable key order, and provides the entry-mutation primitives
shared by the change detector and the file watcher.

All mutations run under one re-entrant lock (single writer). The store keeps a
generation counter: an external change to the document (reported through
invalidate() or noticed through its stat signature) bumps the generation and
the in-memory copy is reloaded lazily on the next access.
"""

import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .errors import FilesystemError, IndexCorruptedError, OperationInProgressError
from .layout import WorkspacePaths
from .models import (
    INDEX_VERSION,
    Deleted,
    Entry,
    FileStatus,
    Index,
    Renamed,
    is_placeholder_id,
    placeholder_id,
    utc_now,
)

# Import fcntl for POSIX file locking (not available on Windows)
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

logger = logging.getLogger(__name__)


class IndexStore:
    """Loads, mutates and atomically persists the sync index.

    Example:
        >>> store = IndexStore("/path/to/workspace")
        >>> index = store.load()
        >>> store.put("content/page/about/index.mdx", entry)
        >>> store.save()
    """

    def __init__(self, root: Union[str, Path]):
        """Initialize the store for a workspace root.

        Args:
            root: Workspace root; the index is kept in <root>/.content-sync/
        """
        self.paths = WorkspacePaths(Path(root))
        self.index_path = self.paths.index_path
        self._lock = threading.RLock()
        self._operation_guard = threading.Lock()
        self._index: Optional[Index] = None
        self._signature: Optional[Tuple[int, int]] = None
        self._generation = 0
        self._stale = False
        self._dirty = False

    @property
    def generation(self) -> int:
        """Monotonic counter bumped on every external change to the document."""
        return self._generation

    @property
    def mutex(self) -> threading.RLock:
        """The single-writer lock; hold it to make several mutations atomic."""
        return self._lock

    @property
    def dirty(self) -> bool:
        """True while in-memory mutations have not been saved."""
        return self._dirty

    def load(self) -> Index:
        """Return the index, reading it from disk if needed.

        Idempotent: repeated calls return the cached index until the document
        changes on disk or invalidate() is called. A missing document is
        created as an empty versioned index.

        Returns:
            The current Index

        Raises:
            IndexCorruptedError: If the document cannot be parsed
            FilesystemError: If the document cannot be read or created
        """
        with self._lock:
            if self._index is not None and not self._is_stale():
                return self._index

            if self._index is not None and self._dirty:
                # Unsaved local mutations: keep them, the next save wins
                logger.warning(
                    f"Index {self.index_path} changed on disk while unsaved changes "
                    f"are pending; keeping in-memory state"
                )
                self._stale = False
                self._signature = self._current_signature()
                return self._index

            if self._index is not None:
                logger.info(f"Index {self.index_path} changed on disk, reloading")
            self._index = self._read()
            self._stale = False
            return self._index

    def changed_on_disk(self) -> bool:
        """True if the document on disk differs from the one last read or written."""
        with self._lock:
            return self._current_signature() != self._signature

    def reload(self) -> Index:
        """Discard the in-memory index and read it again."""
        with self._lock:
            self._index = None
            self._dirty = False
            return self.load()

    def invalidate(self) -> None:
        """Report an external change to the persisted document."""
        with self._lock:
            self._generation += 1
            self._stale = True
            logger.debug(f"Index invalidated (generation {self._generation})")

    def save(self, index: Optional[Index] = None) -> None:
        """Persist the index atomically.

        Args:
            index: Index to store; defaults to the in-memory index

        Raises:
            FilesystemError: If the document cannot be written
        """
        with self._lock:
            if index is not None:
                self._index = index
            if self._index is None:
                self._index = self.load()
            self._write(self._index)
            self._dirty = False

    def get(self, path: str) -> Optional[Entry]:
        with self._lock:
            return self.load().entries.get(path)

    def put(self, path: str, entry: Entry) -> None:
        with self._lock:
            entry.local_path = path
            self.load().entries[path] = entry
            self._dirty = True

    def remove(self, path: str) -> Optional[Entry]:
        """Remove an entry and any references other entries hold to it."""
        with self._lock:
            index = self.load()
            removed = index.entries.pop(path, None)
            if removed is not None:
                for other in index.entries.values():
                    if path in other.related_entry_ids:
                        other.related_entry_ids.remove(path)
                self._dirty = True
            return removed

    def entries(self) -> List[Entry]:
        """Snapshot list of entries in path order."""
        with self._lock:
            index = self.load()
            return [index.entries[path] for path in sorted(index.entries)]

    def find_by_id(self, entry_id: str) -> List[Entry]:
        """Entries carrying a remote id, in path order."""
        with self._lock:
            return [entry for entry in self.entries() if entry.id == entry_id]

    def touch(self) -> None:
        """Mark the in-memory index as modified after mutating an entry in place."""
        with self._lock:
            self._dirty = True

    def mark_deleted(self, path: str, timestamp: Optional[str] = None) -> Optional[Entry]:
        """Transition an entry to Deleted, remembering its state before the deletion."""
        with self._lock:
            entry = self.get(path)
            if entry is None:
                return None
            previous = entry.state_before_deletion if entry.status is FileStatus.DELETED else entry.copy()
            entry.state = Deleted(timestamp or utc_now(), previous=previous)
            self._dirty = True
            return entry

    def apply_rename(
        self,
        old_path: str,
        new_path: str,
        previous: Optional[Entry] = None,
        timestamp: Optional[str] = None,
    ) -> Optional[Entry]:
        """Move an entry from old_path to new_path.

        The new entry inherits the old identity. The first pre-rename path and
        state are kept across rename chains; moving back to that original path
        restores the original entry instead of recording a rename.

        Args:
            old_path: Current key of the entry
            new_path: New key
            previous: State of the entry before it was marked deleted, when the
                caller already changed its status
            timestamp: Rename time (defaults to now)

        Returns:
            The entry now stored at new_path, or None if old_path is unknown
        """
        with self._lock:
            index = self.load()
            current = index.entries.get(old_path)
            if current is None:
                return None
            source = previous if previous is not None else current

            if isinstance(source.state, Renamed):
                original_path = source.state.original_path
                original_state = source.state.original_state
            else:
                original_path = old_path
                original_state = source.copy()

            if new_path == original_path:
                entry = original_state.copy()
                logger.debug(f"Rename back to {new_path} restores original entry")
            else:
                entry = source.copy()
                entry.state = Renamed(
                    original_path=original_path,
                    original_state=original_state,
                    last_modified_local=timestamp or utc_now(),
                )
            entry.local_path = new_path
            # Snapshots can predate earlier renames in the same pass; the live entry's links are current
            entry.related_entry_ids = [p for p in current.related_entry_ids if p != new_path]
            if is_placeholder_id(entry.id):
                entry.id = placeholder_id(new_path)

            del index.entries[old_path]
            index.entries[new_path] = entry
            for other in index.entries.values():
                other.replace_related(old_path, new_path)
            self._dirty = True
            return entry

    def set_last_full_sync(self, timestamp: Optional[str] = None) -> None:
        with self._lock:
            self.load().last_full_sync_at = timestamp or utc_now()
            self._dirty = True

    def pending(self) -> Dict[FileStatus, List[str]]:
        """Paths grouped by every non-synced status."""
        result: Dict[FileStatus, List[str]] = {
            status: [] for status in FileStatus if status is not FileStatus.SYNCED
        }
        for entry in self.entries():
            if entry.status is not FileStatus.SYNCED:
                result[entry.status].append(entry.local_path)
        return result

    @contextmanager
    def operation_lock(self, timeout: float = 30.0) -> Iterator[None]:
        """Hold the workspace-wide lock for one pull or push.

        Uses a process-local mutex plus an fcntl advisory lock on
        .content-sync/sync.lock so that neither another thread nor another
        process can interleave a second reconciliation pass.

        Args:
            timeout: Seconds to wait for the lock

        Raises:
            OperationInProgressError: If the lock is not acquired within timeout
        """
        lock_path = self.paths.lock_path
        if not self._operation_guard.acquire(timeout=timeout):
            raise OperationInProgressError(str(lock_path), timeout)

        lock_file = None
        lock_acquired = False
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(lock_path, 'w')

            if HAS_FCNTL:
                logger.debug(f"Acquiring workspace lock {lock_path}")
                start_time = time.time()
                while True:
                    try:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                        lock_acquired = True
                        logger.debug("Workspace lock acquired")
                        break
                    except (IOError, OSError):
                        if time.time() - start_time >= timeout:
                            raise OperationInProgressError(str(lock_path), timeout)
                        time.sleep(0.1)
            else:
                logger.warning(
                    "File locking not available on this platform. "
                    "Concurrent sync processes may corrupt the index."
                )

            yield
        finally:
            if lock_file is not None:
                if HAS_FCNTL and lock_acquired:
                    try:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                        logger.debug("Workspace lock released")
                    except OSError as e:
                        logger.warning(f"Failed to release lock: {e}")
                lock_file.close()
            self._operation_guard.release()

    def _is_stale(self) -> bool:
        if self._stale:
            return True
        current = self._current_signature()
        if current != self._signature:
            self._generation += 1
            return True
        return False

    def _current_signature(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.index_path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _read(self) -> Index:
        if not self.index_path.exists():
            logger.info(f"No index at {self.index_path}, creating an empty one")
            index = Index()
            self._write(index)
            return index

        try:
            with open(self.index_path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except OSError as e:
            raise FilesystemError(str(self.index_path), 'read', str(e))

        try:
            data = json.loads(raw)
            index = Index.from_dict(data)
        except json.JSONDecodeError as e:
            raise IndexCorruptedError(str(self.index_path), f"invalid JSON: {e}")
        except (KeyError, ValueError, TypeError) as e:
            raise IndexCorruptedError(str(self.index_path), f"invalid structure: {e}")

        if index.version > INDEX_VERSION:
            raise IndexCorruptedError(
                str(self.index_path),
                f"unsupported version {index.version} (expected <= {INDEX_VERSION})"
            )

        self._signature = self._current_signature()
        logger.debug(f"Loaded index with {len(index.entries)} entries")
        return index

    def _write(self, index: Index) -> None:
        directory = self.index_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(str(directory), 'create_directory', str(e))

        payload = json.dumps(index.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.index-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.write('\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.index_path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise FilesystemError(str(self.index_path), 'write', str(e))

        self._signature = self._current_signature()
        logger.debug(f"Saved index with {len(index.entries)} entries")
