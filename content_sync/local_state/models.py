"""Data models for the local sync index.

An Entry describes one tracked file. Its status-dependent fields live in a
tagged state object (Synced, New, Modified, Deleted, Renamed, Conflict) so
that, for example, only a Renamed entry can carry an original path. The
persisted form is a flat camelCase JSON record per entry.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

INDEX_VERSION = 1

PLACEHOLDER_PREFIX = "local:"


class FileType(str, Enum):
    """Role of a tracked file."""
    CONTENT = "content"
    METADATA = "metadata"
    MEDIA = "media"


class FileStatus(str, Enum):
    """Sync status of a tracked file.

    Transitions:
        synced -> modified | deleted | renamed
        new -> deleted | synced
        modified -> synced
        renamed -> synced | restored original (renamed back)
        conflict -> stays until resolved by pull or explicit overwrite
    """
    SYNCED = "synced"
    MODIFIED = "modified"
    NEW = "new"
    DELETED = "deleted"
    RENAMED = "renamed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Synced:
    """File matches the remote as of last_synced_at."""
    status: ClassVar[FileStatus] = FileStatus.SYNCED


@dataclass(frozen=True)
class New:
    """File exists only locally; the entry id is a placeholder."""
    last_modified_local: Optional[str] = None
    status: ClassVar[FileStatus] = FileStatus.NEW


@dataclass(frozen=True)
class Modified:
    """File content changed locally since the last sync."""
    last_modified_local: Optional[str] = None
    status: ClassVar[FileStatus] = FileStatus.MODIFIED


@dataclass(frozen=True)
class Deleted:
    """File is gone locally (or remotely) and awaits reconciliation.

    previous is the entry as it was just before the deletion, so a file that
    reappears gets its pending state (modified, renamed, ...) back.
    """
    last_modified_local: Optional[str] = None
    previous: Optional['Entry'] = None
    status: ClassVar[FileStatus] = FileStatus.DELETED


@dataclass(frozen=True)
class Renamed:
    """File moved; original_state is the entry as it was before the first move."""
    original_path: str
    original_state: 'Entry'
    last_modified_local: Optional[str] = None
    status: ClassVar[FileStatus] = FileStatus.RENAMED


@dataclass(frozen=True)
class Conflict:
    """Both sides changed; excluded from automatic reconciliation."""
    last_modified_local: Optional[str] = None
    status: ClassVar[FileStatus] = FileStatus.CONFLICT


EntryState = Union[Synced, New, Modified, Deleted, Renamed, Conflict]


def placeholder_id(local_path: str) -> str:
    """Placeholder id for an entry that was never pushed."""
    return f"{PLACEHOLDER_PREFIX}{local_path}"


def is_placeholder_id(entry_id: Optional[str]) -> bool:
    """True if entry_id is empty or a local placeholder."""
    return not entry_id or str(entry_id).startswith(PLACEHOLDER_PREFIX)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None for missing or malformed values."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_newer(candidate: Optional[str], reference: Optional[str]) -> bool:
    """True if candidate is a later timestamp than reference.

    A candidate with no reference to compare against counts as newer; a
    missing candidate never does.
    """
    candidate_dt = parse_timestamp(candidate)
    if candidate_dt is None:
        return False
    reference_dt = parse_timestamp(reference)
    if reference_dt is None:
        return True
    return candidate_dt > reference_dt


@dataclass
class Entry:
    """One tracked file and its known state relative to the remote.

    Attributes:
        local_path: Path relative to the workspace root, POSIX separators
        file_type: Content, metadata or media
        hash: Content digest at last observation
        id: Remote id, or "local:<path>" until first push
        state: Status-specific payload (see FileStatus)
        content_type: Logical category (page, post, ...) for content/metadata
        last_synced_at: When the entry last became synced
        last_modified_remote: Remote updatedAt seen at last sync
        related_entry_ids: Paths bound to this entry (counterpart, media)

    Example:
        >>> entry = Entry("content/page/about/index.mdx", FileType.CONTENT, "abc")
        >>> entry.status
        <FileStatus.NEW: 'new'>
        >>> entry.id
        'local:content/page/about/index.mdx'
    """
    local_path: str
    file_type: FileType
    hash: str
    id: str = ""
    state: EntryState = field(default_factory=New)
    content_type: Optional[str] = None
    last_synced_at: Optional[str] = None
    last_modified_remote: Optional[str] = None
    related_entry_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.id:
            self.id = placeholder_id(self.local_path)

    @property
    def status(self) -> FileStatus:
        return self.state.status

    @property
    def original_path(self) -> Optional[str]:
        if isinstance(self.state, Renamed):
            return self.state.original_path
        return None

    @property
    def original_state(self) -> Optional['Entry']:
        if isinstance(self.state, Renamed):
            return self.state.original_state
        return None

    @property
    def state_before_deletion(self) -> Optional['Entry']:
        if isinstance(self.state, Deleted):
            return self.state.previous
        return None

    @property
    def last_modified_local(self) -> Optional[str]:
        return getattr(self.state, 'last_modified_local', None)

    @property
    def has_remote_id(self) -> bool:
        return not is_placeholder_id(self.id)

    def add_related(self, path: str) -> bool:
        """Add path to related_entry_ids; returns True if it was added."""
        if path == self.local_path or path in self.related_entry_ids:
            return False
        self.related_entry_ids.append(path)
        return True

    def replace_related(self, old_path: str, new_path: str) -> None:
        if old_path not in self.related_entry_ids:
            return
        updated: List[str] = []
        for path in self.related_entry_ids:
            path = new_path if path == old_path else path
            if path != self.local_path and path not in updated:
                updated.append(path)
        self.related_entry_ids = updated

    def mark_synced(
        self,
        timestamp: Optional[str] = None,
        remote_id: Optional[str] = None,
        last_modified_remote: Optional[str] = None,
        hash: Optional[str] = None,
    ) -> None:
        """Transition to Synced, clearing local-modification state."""
        self.state = Synced()
        self.last_synced_at = timestamp or utc_now()
        if remote_id:
            self.id = str(remote_id)
        if last_modified_remote:
            self.last_modified_remote = last_modified_remote
        if hash:
            self.hash = hash

    def copy(self) -> 'Entry':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the flat camelCase record stored in the index."""
        data: Dict[str, Any] = {
            'id': self.id,
            'fileType': self.file_type.value,
            'localPath': self.local_path,
            'hash': self.hash,
            'status': self.status.value,
            'relatedEntryIds': list(self.related_entry_ids),
        }
        optional = {
            'contentType': self.content_type,
            'lastSyncedAt': self.last_synced_at,
            'lastModifiedLocal': self.last_modified_local,
            'lastModifiedRemote': self.last_modified_remote,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if isinstance(self.state, Renamed):
            data['originalPath'] = self.state.original_path
            data['originalState'] = self.state.original_state.to_dict()
        elif isinstance(self.state, Deleted) and self.state.previous is not None:
            data['previousState'] = self.state.previous.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Entry':
        """Deserialize a stored record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If fileType or status is not a known value
            TypeError: If the record is not a mapping
        """
        if not isinstance(data, dict):
            raise TypeError(f"entry must be an object, got {type(data).__name__}")

        status = FileStatus(data['status'])
        modified_at = data.get('lastModifiedLocal')
        state: EntryState
        if status is FileStatus.SYNCED:
            state = Synced()
        elif status is FileStatus.NEW:
            state = New(modified_at)
        elif status is FileStatus.MODIFIED:
            state = Modified(modified_at)
        elif status is FileStatus.DELETED:
            previous = data.get('previousState')
            state = Deleted(modified_at, previous=cls.from_dict(previous) if previous else None)
        elif status is FileStatus.CONFLICT:
            state = Conflict(modified_at)
        else:
            state = Renamed(
                original_path=data['originalPath'],
                original_state=cls.from_dict(data['originalState']),
                last_modified_local=modified_at,
            )

        related = data.get('relatedEntryIds') or []
        if not isinstance(related, list):
            raise TypeError("relatedEntryIds must be a list")

        return cls(
            local_path=data['localPath'],
            file_type=FileType(data['fileType']),
            hash=data.get('hash', ''),
            id=str(data.get('id') or ''),
            state=state,
            content_type=data.get('contentType'),
            last_synced_at=data.get('lastSyncedAt'),
            last_modified_remote=data.get('lastModifiedRemote'),
            related_entry_ids=[str(p) for p in related],
        )


@dataclass
class Index:
    """The persisted map from relative path to Entry."""
    version: int = INDEX_VERSION
    last_full_sync_at: Optional[str] = None
    entries: Dict[str, Entry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'lastFullSyncAt': self.last_full_sync_at,
            'entries': {path: self.entries[path].to_dict() for path in sorted(self.entries)},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Index':
        if not isinstance(data, dict):
            raise TypeError(f"index must be an object, got {type(data).__name__}")
        raw_entries = data.get('entries') or {}
        if not isinstance(raw_entries, dict):
            raise TypeError("entries must be an object")
        entries: Dict[str, Entry] = {}
        for path, raw in raw_entries.items():
            entry = Entry.from_dict(raw)
            entry.local_path = path
            entries[path] = entry
        return cls(
            version=int(data['version']),
            last_full_sync_at=data.get('lastFullSyncAt'),
            entries=entries,
        )


@dataclass
class WorkspaceConfig:
    """Workspace configuration stored in .content-sync/config.yaml.

    Attributes:
        url: Base URL of the remote content API (without /api)
        content_dir: Directory holding content/<type>/<slug>/ folders
        media_dir: Directory holding shared media
        max_workers: Bound of the hashing worker pool
        request_timeout: Per-request network timeout in seconds
        rename_window: Seconds within which delete+create is treated as a rename
        lock_timeout: Seconds to wait for the workspace operation lock

    Example:
        >>> config = WorkspaceConfig(url="https://cms.example.com")
        >>> config.content_dir
        'content'
    """
    url: str
    content_dir: str = "content"
    media_dir: str = "media"
    max_workers: int = 4
    request_timeout: float = 30.0
    rename_window: float = 2.0
    lock_timeout: float = 30.0

    @property
    def tracked_roots(self) -> List[str]:
        return [self.content_dir, self.media_dir]
