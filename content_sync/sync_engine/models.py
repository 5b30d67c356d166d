"""Data models for sync engine results.

All models use dataclasses, following the patterns of the local state models.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class RenamePair:
    """One inferred rename."""
    from_path: str
    to_path: str


@dataclass
class ChangeReport:
    """Local drift classified by the change detector.

    Attributes:
        new: Paths never pushed
        modified: Paths whose content changed since last sync
        deleted: Paths whose file is gone
        renamed: Inferred moves (old path no longer in the index)
        conflict: Paths waiting for manual resolution

    Example:
        >>> report = ChangeReport(new=["content/page/about/index.mdx"])
        >>> report.has_changes
        True
    """
    new: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    renamed: List[RenamePair] = field(default_factory=list)
    conflict: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.modified or self.deleted or self.renamed)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.modified) + len(self.deleted) + len(self.renamed)


@dataclass(frozen=True)
class ItemFailure:
    """A per-item failure that did not abort the batch.

    Attributes:
        path: Local path of the item
        kind: Error class name (e.g. "ValidationRejectedError")
        message: Human readable reason
    """
    path: str
    kind: str
    message: str


@dataclass
class PushResult:
    """Counts and failures of one push batch."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    renamed: int = 0
    media_uploaded: int = 0
    errors: int = 0
    failures: List[ItemFailure] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False

    def record_failure(self, path: str, error: Exception) -> None:
        self.errors += 1
        self.failures.append(ItemFailure(path, type(error).__name__, str(error)))


@dataclass
class PullResult:
    """Counts and failures of one pull."""
    items_fetched: int = 0
    media_downloaded: int = 0
    files_written: int = 0
    deleted: int = 0
    errors: int = 0
    conflicts: List[str] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)
    cancelled: bool = False

    def record_failure(self, path: str, error: Exception) -> None:
        self.errors += 1
        self.failures.append(ItemFailure(path, type(error).__name__, str(error)))
