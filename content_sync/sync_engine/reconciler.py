"""Push of detected local changes to the remote API.

The reconciler turns a ChangeReport into remote operations in a fixed order:

    1. deletions (skipping paths that are the source of a rename)
    2. renames (in-place update by remote id when one is known)
    3. new/modified media (so their URLs exist before bodies reference them)
    4. new/modified content, body and metadata pushed together

After every successful item the index is saved, so an aborted or cancelled
batch leaves exactly the completed work applied.
"""

import logging
from pathlib import Path
from typing import List, Optional, Set, Union

from content_sync.local_state.errors import FilesystemError
from content_sync.local_state.hasher import hash_bytes
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.layout import (
    BODY_SUFFIX,
    CONTENT_DIR,
    MEDIA_DIR,
    counterpart_path,
    media_remote_path,
    media_scope_and_name,
    type_and_slug,
)
from content_sync.local_state.models import (
    Entry,
    FileStatus,
    FileType,
    is_placeholder_id,
    utc_now,
)
from content_sync.remote_client.api_wrapper import ContentAPI, MediaAPI, media_path_from_url, media_url
from content_sync.remote_client.errors import RemoteError, ValidationRejectedError
from content_sync.remote_client.models import ContentItem
from content_sync.sync_engine.auth_retry import BatchAuthRetry
from content_sync.sync_engine.cancellation import CancellationToken
from content_sync.sync_engine.content_files import (
    dump_metadata,
    read_bytes,
    read_metadata,
    read_text,
    write_if_changed,
)
from content_sync.sync_engine.content_validator import ContentValidator, field_errors
from content_sync.sync_engine.errors import BatchAbortedError, OperationCancelledError
from content_sync.sync_engine.media_references import MediaReferenceRewriter, is_remote_media
from content_sync.sync_engine.models import ChangeReport, PushResult
from content_sync.sync_engine.relationship_manager import RelationshipManager

logger = logging.getLogger(__name__)

# Errors recorded against a single item; the batch continues
ITEM_ERRORS = (RemoteError, FilesystemError, ValueError)

PENDING_STATUSES = (FileStatus.NEW, FileStatus.MODIFIED)


class Reconciler:
    """Applies a ChangeReport to the remote and records the outcome locally.

    Failure semantics:
        - Authentication failure: the credential is refreshed once per batch
          and the failed call retried; a second failure aborts the batch.
        - Validation rejection, not-found on update, local I/O errors: recorded
          for the item, the batch continues.
        - Remote not-found on delete: success.
        - Conflict entries are never pushed.

    Example:
        >>> reconciler = Reconciler(store, root, content_api, media_api)
        >>> result = reconciler.push(detector.detect_changes())
        >>> print(f"{result.created} created, {result.errors} errors")
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
        self.validator = ContentValidator(root, content_dir, media_dir)
        self.content_dir = content_dir
        self.media_dir = media_dir
        self._auth = BatchAuthRetry(content_api.authenticator)

    def push(
        self,
        report: ChangeReport,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PushResult:
        """Push one batch of local changes.

        Args:
            report: Output of ChangeDetector.detect_changes()
            cancel_token: Optional cancellation signal checked between items

        Returns:
            PushResult with counts and per-item failures
        """
        result = PushResult()
        token = cancel_token or CancellationToken()
        self._auth.reset()
        handled_units: Set[str] = set()
        deferred_renames: List[str] = []

        logger.info(f"Pushing {report.total} change(s)")
        try:
            self._push_deletions(report, result, token)
            self._push_renames(report, result, token, handled_units, deferred_renames)
            self._push_media(report, result, token)
            self._push_content(report, result, token, handled_units, deferred_renames)
        except BatchAbortedError as e:
            result.aborted = True
            logger.error(f"Push aborted: {e}")
        except OperationCancelledError as e:
            result.cancelled = True
            logger.warning(f"Push stopped: {e}")
        finally:
            self.store.save()

        logger.info(
            f"Push finished: {result.created} created, {result.updated} updated, "
            f"{result.deleted} deleted, {result.renamed} renamed, "
            f"{result.media_uploaded} media uploaded, {result.errors} error(s)"
        )
        return result

    def _call(self, operation: str, func, *args, **kwargs):
        return self._auth.call(operation, func, *args, **kwargs)

    # Deletions

    def _push_deletions(self, report: ChangeReport, result: PushResult, token: CancellationToken) -> None:
        rename_sources = {pair.from_path for pair in report.renamed}
        for path in report.deleted:
            token.raise_if_cancelled()
            if path in rename_sources:
                logger.debug(f"Skipping deletion of {path}: source of a rename")
                continue
            entry = self.store.get(path)
            if entry is None or entry.status is not FileStatus.DELETED:
                continue
            try:
                if self._delete_entry(entry):
                    result.deleted += 1
            except ITEM_ERRORS as e:
                logger.error(f"Failed to delete {path}: {e}")
                result.record_failure(path, e)
                continue
            self.store.save()

    def _delete_entry(self, entry: Entry) -> bool:
        """Delete one entry remotely and drop it; returns True if the remote was called."""
        path = entry.local_path

        if entry.file_type is FileType.METADATA:
            content_entry = self.store.get(counterpart_path(path) or "")
            if content_entry is not None and content_entry.status is FileStatus.DELETED:
                # Dropped together with its content entry
                return False
            if content_entry is not None:
                logger.warning(
                    f"Metadata {path} was deleted but its body still exists; "
                    f"restore the metadata file or delete the body"
                )
                return False
            self.store.remove(path)
            return False

        if not entry.has_remote_id:
            logger.info(f"Dropping never-pushed entry {path}")
            self.store.remove(path)
            self._drop_deleted_counterpart(path)
            return False

        if entry.file_type is FileType.CONTENT:
            self._call(f"delete_content({entry.id})", self.content_api.delete, entry.id)
            self.store.remove(path)
            self._drop_deleted_counterpart(path)
        else:
            remote_path = self._remote_media_path(entry)
            self._call(f"delete_media({remote_path})", self.media_api.delete, remote_path)
            self.store.remove(path)
        logger.info(f"Deleted {path}")
        return True

    def _drop_deleted_counterpart(self, path: str) -> None:
        counterpart = counterpart_path(path)
        if counterpart is None:
            return
        other = self.store.get(counterpart)
        if other is not None and other.status is FileStatus.DELETED:
            self.store.remove(counterpart)

    # Renames

    def _push_renames(
        self,
        report: ChangeReport,
        result: PushResult,
        token: CancellationToken,
        handled_units: Set[str],
        deferred: List[str],
    ) -> None:
        """Push renames, media first so renamed bodies can reference them.

        A renamed content item that references media not uploaded yet is
        deferred to the content pass, after the media uploads.
        """
        pairs = sorted(report.renamed, key=lambda p: not self._is_media_rename(p.to_path))
        for pair in pairs:
            token.raise_if_cancelled()
            entry = self.store.get(pair.to_path)
            if entry is None or entry.status is not FileStatus.RENAMED:
                continue
            try:
                if entry.file_type is FileType.MEDIA:
                    self._push_renamed_media(entry)
                    result.renamed += 1
                else:
                    unit = self._unit_body_path(entry.local_path)
                    if unit in handled_units:
                        continue
                    handled_units.add(unit)
                    if self._pending_media(unit):
                        logger.debug(f"Deferring rename of {unit} until its media are uploaded")
                        deferred.append(unit)
                        continue
                    if self._push_content_unit(unit, result, renamed=True):
                        result.renamed += 1
            except ITEM_ERRORS as e:
                logger.error(f"Failed to push rename {pair.from_path} -> {pair.to_path}: {e}")
                result.record_failure(pair.to_path, e)
                continue
            self.store.save()

    def _push_renamed_media(self, entry: Entry) -> None:
        """Upload media under its new scope, then delete the old remote file."""
        old_entry = entry.original_state
        url = self._upload_media(entry)
        if old_entry is not None and old_entry.has_remote_id:
            old_remote = self._remote_media_path(old_entry)
            try:
                self._call(f"delete_media({old_remote})", self.media_api.delete, old_remote)
            except (RemoteError, ValueError) as e:
                logger.warning(f"Uploaded {entry.local_path} but could not delete old media {old_remote}: {e}")
        logger.info(f"Renamed media {entry.original_path} -> {entry.local_path} ({url})")

    # Media

    def _push_media(self, report: ChangeReport, result: PushResult, token: CancellationToken) -> None:
        for path in report.new + report.modified:
            token.raise_if_cancelled()
            entry = self.store.get(path)
            if entry is None or entry.file_type is not FileType.MEDIA:
                continue
            if entry.status not in PENDING_STATUSES:
                # Already synced by an earlier attempt
                continue
            try:
                self._upload_media(entry)
                result.media_uploaded += 1
            except ITEM_ERRORS as e:
                logger.error(f"Failed to upload {path}: {e}")
                result.record_failure(path, e)
                continue
            self.store.save()

    def _upload_media(self, entry: Entry) -> str:
        data = read_bytes(self.root, entry.local_path)
        scope, filename = media_scope_and_name(entry.local_path)
        url = self._call(
            f"upload_media({scope}/{filename})",
            self.media_api.upload, data, filename, scope,
        )
        entry.mark_synced(utc_now(), remote_id=url, hash=hash_bytes(data))
        self.store.touch()
        return url

    def _remote_media_path(self, entry: Entry) -> str:
        from_url = media_path_from_url(entry.id) if entry.has_remote_id else None
        return from_url or media_remote_path(entry.local_path)

    def _is_media_rename(self, path: str) -> bool:
        entry = self.store.get(path)
        return entry is not None and entry.file_type is FileType.MEDIA

    def _media_url_for(self, local_path: str) -> Optional[str]:
        entry = self.store.get(local_path)
        if entry is not None and entry.has_remote_id and is_remote_media(entry.id):
            return entry.id
        scope, filename = media_scope_and_name(local_path)
        return media_url(scope, filename)

    def _is_uploaded(self, media_path: str) -> bool:
        entry = self.store.get(media_path)
        return (
            entry is not None
            and entry.file_type is FileType.MEDIA
            and entry.status is FileStatus.SYNCED
            and entry.has_remote_id
            and is_remote_media(entry.id)
        )

    def _referenced_media(self, body: str, metadata: dict, folder: str) -> List[str]:
        """Local media paths referenced by a body and its coverImageUrl."""
        targets = self.rewriter.local_targets(body, folder)
        cover = metadata.get('coverImageUrl')
        if isinstance(cover, str) and cover:
            targets.extend(self.rewriter.local_targets(f"![]({cover})", folder))
        return list(dict.fromkeys(targets))

    def _pending_media(self, body_path: str) -> List[str]:
        """Referenced media that exist locally but are still waiting for upload."""
        meta_path = counterpart_path(body_path) or ""
        if not (self.root / body_path).is_file():
            return []
        metadata = read_metadata(self.root, meta_path) if (self.root / meta_path).is_file() else {}
        folder = body_path.rpartition('/')[0]
        pending = []
        for media_path in self._referenced_media(read_text(self.root, body_path), metadata, folder):
            entry = self.store.get(media_path)
            if entry is not None and entry.status in PENDING_STATUSES + (FileStatus.RENAMED,):
                pending.append(media_path)
        return pending

    # Content

    def _push_content(
        self,
        report: ChangeReport,
        result: PushResult,
        token: CancellationToken,
        handled_units: Set[str],
        deferred: List[str],
    ) -> None:
        units: List[str] = []
        for path in report.new + report.modified:
            entry = self.store.get(path)
            if entry is None or entry.file_type is FileType.MEDIA:
                continue
            unit = self._unit_body_path(path)
            if unit not in handled_units and unit not in units:
                units.append(unit)

        batch = [(unit, True) for unit in deferred] + [(unit, False) for unit in units]
        for unit, renamed in batch:
            token.raise_if_cancelled()
            handled_units.add(unit)
            try:
                if self._push_content_unit(unit, result, renamed=renamed) and renamed:
                    result.renamed += 1
            except ITEM_ERRORS as e:
                logger.error(f"Failed to push {unit}: {e}")
                result.record_failure(unit, e)
                continue
            self.store.save()

    def _unit_body_path(self, path: str) -> str:
        """Body path identifying the content item a body/metadata path belongs to."""
        if path.endswith(BODY_SUFFIX):
            return path
        return counterpart_path(path) or path

    def _push_content_unit(self, body_path: str, result: PushResult, renamed: bool) -> bool:
        """Create or update the content item made of body_path and its metadata.

        Returns:
            True if a remote call was made

        Raises:
            ValidationRejectedError: If metadata is incomplete or the remote rejects it
            RemoteNotFoundError: If an update targets an id the remote no longer has
            FilesystemError: If local files cannot be read or written
        """
        meta_path = counterpart_path(body_path) or ""
        body_entry = self.store.get(body_path)
        meta_entry = self.store.get(meta_path)
        entries = [e for e in (body_entry, meta_entry) if e is not None]

        if any(e.status is FileStatus.CONFLICT for e in entries):
            logger.warning(f"Skipping {body_path}: unresolved conflict")
            return False
        if all(e.status is FileStatus.SYNCED for e in entries):
            logger.debug(f"Skipping {body_path}: already synced")
            return False
        if not (self.root / body_path).is_file():
            raise FilesystemError(body_path, 'read', "body file is missing")

        folder = body_path.rpartition('/')[0]
        content_type, slug = type_and_slug(body_path)
        metadata = read_metadata(self.root, meta_path) if (self.root / meta_path).is_file() else {}
        body = read_text(self.root, body_path)

        remote_id = self._remote_id(metadata, entries)
        if renamed and remote_id is not None and self._rename_is_local_only(body_path, entries):
            self._mark_entries_synced(entries)
            self.relationships.link(body_path, meta_path)
            logger.info(f"Renamed {body_path} locally only (type and slug unchanged)")
            return False

        if remote_id is None:
            metadata.setdefault('language', 'en')
        problems = self.validator.validate_item(body_path, metadata, body)
        for problem in problems:
            if not problem.is_error:
                logger.warning(f"{problem.path}: {problem.message}")
        errors = field_errors(problems)
        if errors:
            raise ValidationRejectedError("validate", f"Invalid content in {folder}", errors)

        not_uploaded = [p for p in self._referenced_media(body, metadata, folder) if not self._is_uploaded(p)]
        if not_uploaded:
            raise ValidationRejectedError(
                "validate",
                f"Referenced media not uploaded for {folder}",
                {'media': [f"{path} is not uploaded" for path in not_uploaded]},
            )

        item = ContentItem.from_dict({**metadata, 'body': body, 'slug': slug, 'type': content_type})
        item.body = self.rewriter.to_remote(body, folder, self._media_url_for)
        if item.cover_image_url:
            item.cover_image_url = self.rewriter.target_to_remote(
                item.cover_image_url, folder, self._media_url_for
            ) or item.cover_image_url

        if remote_id is not None:
            remote = self._call(f"update_content({remote_id})", self.content_api.update, remote_id, item)
            if not renamed:
                result.updated += 1
            logger.info(f"Updated {body_path} (id {remote_id})")
        else:
            if item.allow_comments is None:
                item.allow_comments = True
            if not item.published_at:
                item.published_at = utc_now()
            remote = self._call(f"create_content({content_type}/{slug})", self.content_api.create, item)
            remote_id = remote.id
            if not remote_id:
                raise ValueError(f"Remote returned no id for {body_path}")
            result.created += 1
            logger.info(f"Created {body_path} (id {remote_id})")

        if metadata.get('id') != remote_id:
            metadata['id'] = remote_id
        meta_bytes = dump_metadata(metadata)
        write_if_changed(self.root, meta_path, meta_bytes)

        now = utc_now()
        self._mark_unit_synced(body_path, FileType.CONTENT, content_type, remote_id, now,
                               remote.updated_at, hash_bytes(read_bytes(self.root, body_path)))
        self._mark_unit_synced(meta_path, FileType.METADATA, content_type, remote_id, now,
                               remote.updated_at, hash_bytes(meta_bytes))
        self.relationships.link(body_path, meta_path)
        for media_path in self.rewriter.local_targets(body, folder):
            self.relationships.link_media(body_path, media_path)
        if metadata.get('coverImageUrl'):
            for media_path in self.rewriter.local_targets(f"![]({metadata['coverImageUrl']})", folder):
                self.relationships.link_media(meta_path, media_path)
        return True

    def _rename_is_local_only(self, body_path: str, entries: List[Entry]) -> bool:
        """True if the move kept type and slug and changed no content since the last sync."""
        originals = [e.original_path for e in entries if e.original_path]
        if not originals or any(type_and_slug(p) != type_and_slug(body_path) for p in originals):
            return False
        for entry in entries:
            original = entry.original_state
            if original is None:
                if entry.status is not FileStatus.SYNCED:
                    return False
            elif original.status is not FileStatus.SYNCED or original.hash != entry.hash:
                return False
        return True

    def _mark_entries_synced(self, entries: List[Entry]) -> None:
        now = utc_now()
        for entry in entries:
            original = entry.original_state
            entry.mark_synced(now, remote_id=original.id if original is not None else None)
        self.store.touch()

    def _remote_id(self, metadata: dict, entries: List[Entry]) -> Optional[str]:
        candidate = metadata.get('id')
        if candidate is not None and not is_placeholder_id(str(candidate)):
            return str(candidate)
        for entry in entries:
            if entry.has_remote_id:
                return entry.id
            original = entry.original_state
            if original is not None and original.has_remote_id:
                return original.id
        return None

    def _mark_unit_synced(
        self,
        path: str,
        file_type: FileType,
        content_type: str,
        remote_id: str,
        timestamp: str,
        updated_at: Optional[str],
        digest: str,
    ) -> None:
        entry = self.store.get(path)
        if entry is None:
            entry = Entry(local_path=path, file_type=file_type, hash=digest, content_type=content_type)
            self.store.put(path, entry)
        entry.content_type = content_type
        entry.mark_synced(timestamp, remote_id=remote_id, last_modified_remote=updated_at, hash=digest)
        self.store.touch()
