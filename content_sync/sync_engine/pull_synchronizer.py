"""Materialization of the remote snapshot into local files.

The remote is authoritative and snapshot-style: one list call returns every
content item. Each item becomes a body file and a metadata file under
content/<type>/<slug>/, its media are downloaded once, and remote media URLs
are rewritten to local references. Files are only written when their bytes
change, so pulling twice without remote changes touches nothing.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from content_sync.local_state.errors import FilesystemError
from content_sync.local_state.hasher import hash_bytes, hash_file
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import (
    CONTENT_DIR,
    MEDIA_DIR,
    body_path,
    content_folder,
    counterpart_path,
    metadata_path,
)
from content_sync.local_state.models import (
    Conflict,
    Deleted,
    Entry,
    FileStatus,
    FileType,
    Modified,
    Synced,
    is_newer,
    utc_now,
)
from content_sync.remote_client.api_wrapper import ContentAPI, MediaAPI
from content_sync.remote_client.errors import RemoteError
from content_sync.remote_client.models import MEDIA_FIELDS, ContentItem
from content_sync.sync_engine.auth_retry import BatchAuthRetry
from content_sync.sync_engine.cancellation import CancellationToken
from content_sync.sync_engine.content_files import dump_metadata, remove_file, write_if_changed
from content_sync.sync_engine.errors import OperationCancelledError
from content_sync.sync_engine.media_references import MediaReferenceRewriter, is_remote_media
from content_sync.sync_engine.models import PullResult
from content_sync.sync_engine.relationship_manager import RelationshipManager

logger = logging.getLogger(__name__)

ITEM_ERRORS = (RemoteError, FilesystemError, ValueError)

LOCAL_CHANGE_STATUSES = (FileStatus.MODIFIED, FileStatus.NEW, FileStatus.RENAMED, FileStatus.DELETED)

KEEP_LOCAL = "local"
KEEP_REMOTE = "remote"


class PullSynchronizer:
    """Reconciles the remote snapshot into the workspace.

    Conflict rule: when the local files changed since the last sync and the
    remote updatedAt advanced past the recorded lastModifiedRemote, both
    entries of the item are marked conflict and the local files are kept.
    Local-only changes are kept as well; the next push sends them.

    Example:
        >>> puller = PullSynchronizer(store, root, content_api, media_api)
        >>> result = puller.pull()
        >>> print(f"{result.items_fetched} items, {len(result.conflicts)} conflicts")
    """

    def __init__(
        self,
        store: IndexStore,
        root: Union[str, Path],
        content_api: ContentAPI,
        media_api: MediaAPI,
        relationships: Optional[RelationshipManager] = None,
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
    ):
        self.store = store
        self.root = Path(root)
        self.content_api = content_api
        self.media_api = media_api
        self.relationships = relationships or RelationshipManager(store)
        self.rewriter = MediaReferenceRewriter(content_dir, media_dir)
        self.content_dir = content_dir
        self.media_dir = media_dir
        self._auth = BatchAuthRetry(content_api.authenticator)

    def pull(self, cancel_token: Optional[CancellationToken] = None) -> PullResult:
        """Fetch the remote snapshot and apply it locally.

        Args:
            cancel_token: Optional cancellation signal checked between items

        Returns:
            PullResult with counts, conflicts and per-item failures

        Raises:
            BatchAbortedError: If authentication fails after one refresh
            APIUnreachableError, APIAccessError: If the list call fails
        """
        result = PullResult()
        token = cancel_token or CancellationToken()
        self._auth.reset()

        items = self._auth.call("list_content()", self.content_api.list)
        result.items_fetched = len(items)
        logger.info(f"Pulling {len(items)} remote item(s)")

        seen_ids: Set[str] = set()
        try:
            for item in items:
                token.raise_if_cancelled()
                problem = _validate_item(item)
                if problem:
                    label = item.id or item.slug or "<unknown>"
                    logger.error(f"Skipping remote item {label}: {problem}")
                    result.record_failure(label, ValueError(problem))
                    continue
                seen_ids.add(str(item.id))
                try:
                    self._pull_item(item, result)
                except ITEM_ERRORS as e:
                    label = body_path(item.type, item.slug, self.content_dir)
                    logger.error(f"Failed to pull {label}: {e}")
                    result.record_failure(label, e)
                self.store.save()

            self._mark_remote_deletions(seen_ids, result)
            self.store.set_last_full_sync()
        except OperationCancelledError as e:
            result.cancelled = True
            logger.warning(f"Pull stopped: {e}")
        finally:
            self.store.save()

        logger.info(
            f"Pull finished: {result.items_fetched} fetched, {result.files_written} file(s) written, "
            f"{result.media_downloaded} media downloaded, {len(result.conflicts)} conflict(s), "
            f"{result.deleted} marked deleted, {result.errors} error(s)"
        )
        return result

    def _pull_item(self, item: ContentItem, result: PullResult) -> None:
        body_rel = body_path(item.type, item.slug, self.content_dir)
        meta_rel = metadata_path(item.type, item.slug, self.content_dir)
        folder = content_folder(item.type, item.slug, self.content_dir)

        if self._has_pending_local_move(item, body_rel, meta_rel):
            logger.info(f"Skipping {body_rel}: local rename of id {item.id} pending push")
            return
        self._drop_relocated(item, body_rel, meta_rel)

        body_text = self.rewriter.to_local(item.body or "", folder, item.scope)
        metadata = item.to_metadata()
        for name in MEDIA_FIELDS:
            if metadata.get(name):
                metadata[name] = self.rewriter.target_to_local(
                    metadata[name], folder, item.scope
                ) or metadata[name]
        body_bytes = body_text.encode('utf-8')
        meta_bytes = dump_metadata(metadata)

        entries = {
            body_rel: self.store.get(body_rel),
            meta_rel: self.store.get(meta_rel),
        }
        rendered = {body_rel: body_bytes, meta_rel: meta_bytes}

        if not self._matches_local(rendered):
            local_changed = any(self._locally_changed(path, entry) for path, entry in entries.items())
            already_conflicted = any(
                entry is not None and entry.status is FileStatus.CONFLICT for entry in entries.values()
            )
            remote_advanced = any(
                entry is None or is_newer(item.updated_at, entry.last_modified_remote)
                for entry in entries.values()
            )
            if already_conflicted or (local_changed and remote_advanced):
                self._mark_conflict(entries)
                result.conflicts.append(body_rel)
                logger.warning(f"Conflict: {body_rel} changed locally and remotely")
                return
            if local_changed:
                logger.info(f"Keeping local changes to {body_rel} (remote unchanged)")
                return

        media_paths = self._download_media(item, result)

        for path, data in rendered.items():
            if write_if_changed(self.root, path, data):
                result.files_written += 1

        now = utc_now()
        self._record_synced(body_rel, FileType.CONTENT, item, hash_bytes(body_bytes), now)
        self._record_synced(meta_rel, FileType.METADATA, item, hash_bytes(meta_bytes), now)
        self.relationships.link(body_rel, meta_rel)
        for media_path in media_paths:
            self.relationships.link_media(body_rel, media_path)

    def _matches_local(self, rendered: Dict[str, bytes]) -> bool:
        for path, data in rendered.items():
            target = self.root / path
            try:
                if not target.is_file() or target.read_bytes() != data:
                    return False
            except OSError as e:
                raise FilesystemError(path, 'read', str(e))
        return True

    def _locally_changed(self, path: str, entry: Optional[Entry]) -> bool:
        exists = (self.root / path).is_file()
        if entry is None:
            # An untracked local file at the target path
            return exists
        if entry.status in LOCAL_CHANGE_STATUSES:
            return True
        if not exists:
            return False
        return hash_file(self.root / path) != entry.hash

    def _mark_conflict(self, entries: Dict[str, Optional[Entry]]) -> None:
        now = utc_now()
        for entry in entries.values():
            if entry is not None and entry.status is not FileStatus.CONFLICT:
                entry.state = Conflict(now)
                self.store.touch()

    def _has_pending_local_move(self, item: ContentItem, body_rel: str, meta_rel: str) -> bool:
        """True if the item's id is held by a local rename not yet pushed."""
        for entry in self.store.find_by_id(str(item.id)):
            if entry.local_path in (body_rel, meta_rel):
                continue
            if entry.status is FileStatus.RENAMED:
                return True
        return False

    def _drop_relocated(self, item: ContentItem, body_rel: str, meta_rel: str) -> None:
        """Remove unchanged files left at an item's old location after a remote slug/type change."""
        for entry in self.store.find_by_id(str(item.id)):
            if entry.file_type is FileType.MEDIA or entry.local_path in (body_rel, meta_rel):
                continue
            if self._locally_changed(entry.local_path, entry):
                logger.warning(
                    f"Remote moved {entry.local_path} to {body_rel}, "
                    f"but the old file has local changes; leaving it in place"
                )
                continue
            logger.info(f"Remote moved {entry.local_path} -> {body_rel}")
            remove_file(self.root, entry.local_path)
            self.store.remove(entry.local_path)

    def _download_media(self, item: ContentItem, result: PullResult) -> List[str]:
        """Download media referenced by the item; returns their local paths."""
        urls = self.rewriter.remote_targets(item.body or "")
        cover = item.cover_image_url
        if cover and is_remote_media(cover) and cover not in urls:
            urls.append(cover)

        local_paths: List[str] = []
        for url, local_path in self.rewriter.local_paths_for_remote(urls, item.scope).items():
            local_paths.append(local_path)
            target = self.root / local_path
            entry = self.store.get(local_path)
            if target.is_file():
                if entry is None:
                    self.store.put(local_path, self._media_entry(local_path, url, hash_file(target), item))
                continue
            try:
                data = self._auth.call(f"download_media({url})", self.media_api.download, url)
                write_if_changed(self.root, local_path, data)
            except ITEM_ERRORS as e:
                logger.error(f"Failed to download {url}: {e}")
                result.record_failure(local_path, e)
                continue
            result.media_downloaded += 1
            self.store.put(local_path, self._media_entry(local_path, url, hash_bytes(data), item))
            logger.debug(f"Downloaded {url} -> {local_path}")
        return local_paths

    def _media_entry(self, local_path: str, url: str, digest: str, item: ContentItem) -> Entry:
        co_located = local_path.startswith(f"{self.content_dir}/")
        entry = Entry(
            local_path=local_path,
            file_type=FileType.MEDIA,
            hash=digest,
            id=url,
            content_type=item.type if co_located else None,
        )
        entry.mark_synced(utc_now())
        return entry

    def _record_synced(
        self,
        path: str,
        file_type: FileType,
        item: ContentItem,
        digest: str,
        timestamp: str,
    ) -> None:
        entry = self.store.get(path)
        if entry is None:
            entry = Entry(local_path=path, file_type=file_type, hash=digest, content_type=item.type)
            self.store.put(path, entry)
        elif (
            entry.status is FileStatus.SYNCED
            and entry.id == str(item.id)
            and entry.hash == digest
            and entry.last_modified_remote == item.updated_at
        ):
            return
        entry.content_type = item.type
        entry.mark_synced(timestamp, remote_id=str(item.id), last_modified_remote=item.updated_at, hash=digest)
        self.store.touch()

    def _mark_remote_deletions(self, seen_ids: Set[str], result: PullResult) -> None:
        """Mark entries whose id vanished from the remote snapshot.

        Media are skipped (the snapshot lists content only), as are entries
        that never existed remotely. Unchanged local files are removed;
        locally edited ones become conflicts instead of being discarded.
        """
        now = utc_now()
        for entry in self.store.entries():
            if entry.file_type is FileType.MEDIA:
                continue
            if entry.status in (FileStatus.NEW, FileStatus.DELETED):
                continue
            if not entry.has_remote_id or entry.id in seen_ids:
                continue

            if self._locally_changed(entry.local_path, entry):
                entry.state = Conflict(now)
                result.conflicts.append(entry.local_path)
                logger.warning(f"Conflict: {entry.local_path} deleted remotely but changed locally")
            else:
                remove_file(self.root, entry.local_path)
                entry.state = Deleted(now)
                result.deleted += 1
                logger.info(f"Deleted remotely: {entry.local_path}")
            self.store.touch()

    def resolve_conflict(self, path: str, keep: str) -> List[str]:
        """Clear a conflict on a content item by choosing one side.

        Args:
            path: Body or metadata path of the conflicted item
            keep: "local" to push local files next, "remote" to overwrite
                them on the next pull

        Returns:
            Paths whose entries were changed

        Raises:
            ValueError: If keep is not "local" or "remote"
        """
        if keep not in (KEEP_LOCAL, KEEP_REMOTE):
            raise ValueError(f"keep must be '{KEEP_LOCAL}' or '{KEEP_REMOTE}', got '{keep}'")

        paths = [path]
        counterpart = counterpart_path(path)
        if counterpart:
            paths.append(counterpart)

        now = utc_now()
        changed: List[str] = []
        with self.store.mutex:
            for candidate in paths:
                entry = self.store.get(candidate)
                if entry is None or entry.status is not FileStatus.CONFLICT:
                    continue
                exists = (self.root / candidate).is_file()
                if keep == KEEP_LOCAL:
                    entry.state = Modified(now) if exists else Deleted(now)
                    entry.last_modified_remote = now
                else:
                    entry.state = Synced()
                    entry.last_modified_remote = None
                    if exists:
                        entry.hash = hash_file(self.root / candidate)
                changed.append(candidate)
                logger.info(f"Resolved conflict on {candidate} keeping {keep}")
            if changed:
                self.store.touch()
                self.store.save()
        return changed


def _validate_item(item: ContentItem) -> Optional[str]:
    """Reason an item cannot be materialized, or None."""
    for name in ('id', 'title', 'slug', 'type'):
        if not getattr(item, name):
            return f"missing {name}"
    for name in ('slug', 'type'):
        value = str(getattr(item, name))
        if '/' in value or '\\' in value or value.startswith('.'):
            return f"unsafe {name} '{value}'"
    return None
