"""Unit tests for sync_engine.change_detector module."""

import os

import pytest

from content_sync.local_state.models import Conflict, FileStatus, FileType
from content_sync.sync_engine.change_detector import ChangeDetector
from content_sync.sync_engine.models import RenamePair
from tests.fixtures.sample_content import PNG_BYTES, valid_metadata
from tests.helpers.workspace import write_file, write_item

ABOUT_BODY = "content/page/about/index.mdx"
ABOUT_META = "content/page/about/index.json"
ABOUT_US_BODY = "content/page/about-us/index.mdx"
ABOUT_US_META = "content/page/about-us/index.json"


def mark_all_synced(store, remote_id="42"):
    """Pretend every indexed entry was pushed."""
    for entry in store.entries():
        entry.mark_synced(remote_id=remote_id if entry.file_type is not FileType.MEDIA else "/api/media/x")
    store.touch()
    store.save()


class ChangeDetectorTestBase:
    """Base class providing a detector over the workspace fixture."""

    @pytest.fixture
    def detector(self, store, workspace):
        return ChangeDetector(store, workspace, max_workers=2)

    @pytest.fixture
    def synced_about(self, workspace, store, detector):
        """One content item, detected and marked synced."""
        write_item(workspace, "page", "about", "# About\n", valid_metadata())
        detector.detect_changes()
        mark_all_synced(store)
        return workspace


class TestNewFiles(ChangeDetectorTestBase):
    """Test cases for new file detection."""

    def test_new_item_reported_and_linked(self, workspace, store, detector):
        """Body and metadata of a new item are new and linked to each other."""
        # Arrange
        write_item(workspace, "page", "about", "# About\n", valid_metadata())

        # Act
        report = detector.detect_changes()

        # Assert
        assert report.new == [ABOUT_META, ABOUT_BODY]
        body = store.get(ABOUT_BODY)
        assert body.status is FileStatus.NEW
        assert body.content_type == "page"
        assert body.id == f"local:{ABOUT_BODY}"
        assert body.related_entry_ids == [ABOUT_META]

    def test_media_files_tracked(self, workspace, store, detector):
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        write_file(workspace, "content/page/about/team.jpg", b"jpeg")

        report = detector.detect_changes()

        assert report.new == ["content/page/about/team.jpg", "media/shared/logo.png"]
        assert store.get("media/shared/logo.png").file_type is FileType.MEDIA
        assert store.get("media/shared/logo.png").content_type is None

    def test_untracked_and_hidden_files_ignored(self, workspace, detector):
        write_file(workspace, "content/page/about/notes.txt", "x")
        write_file(workspace, "content/page/.draft/index.mdx", "x")
        write_file(workspace, "media/.DS_Store", b"x")
        write_file(workspace, "README.md", "x")

        report = detector.detect_changes()

        assert report.has_changes is False

    def test_index_is_persisted(self, workspace, store, detector):
        write_item(workspace, "page", "about", "# About\n")

        detector.detect_changes()

        assert ABOUT_BODY in store.index_path.read_text()

    def test_second_run_reports_same_new_entries(self, workspace, detector):
        write_item(workspace, "page", "about", "# About\n")
        detector.detect_changes()

        assert detector.detect_changes().new == [ABOUT_BODY]


class TestModifiedAndDeleted(ChangeDetectorTestBase):
    """Test cases for modification and deletion."""

    def test_unchanged_synced_files(self, synced_about, detector):
        assert detector.detect_changes().has_changes is False

    def test_edited_body_is_modified(self, synced_about, store, detector):
        write_file(synced_about, ABOUT_BODY, "# About us\n")

        report = detector.detect_changes()

        assert report.modified == [ABOUT_BODY]
        assert store.get(ABOUT_BODY).last_modified_local is not None

    def test_touch_without_content_change_is_not_modified(self, synced_about, detector):
        """Only content hashes matter, not timestamps."""
        path = synced_about / ABOUT_BODY
        os.utime(path, (1, 1))

        assert detector.detect_changes().modified == []

    def test_removed_file_is_deleted(self, synced_about, store, detector):
        (synced_about / ABOUT_BODY).unlink()

        report = detector.detect_changes()

        assert report.deleted == [ABOUT_BODY]
        assert store.get(ABOUT_BODY).status is FileStatus.DELETED

    def test_new_file_deleted_before_push(self, workspace, store, detector):
        write_item(workspace, "page", "draft", "# Draft\n")
        detector.detect_changes()
        (workspace / "content/page/draft/index.mdx").unlink()

        report = detector.detect_changes()

        assert report.deleted == ["content/page/draft/index.mdx"]
        assert report.new == []

    def test_reappeared_file_restores_status(self, synced_about, store, detector):
        """A file deleted and put back unchanged is synced again."""
        original = (synced_about / ABOUT_BODY).read_bytes()
        (synced_about / ABOUT_BODY).unlink()
        detector.detect_changes()
        write_file(synced_about, ABOUT_BODY, original)

        report = detector.detect_changes()

        assert report.has_changes is False
        assert store.get(ABOUT_BODY).status is FileStatus.SYNCED

    def test_reappeared_file_with_new_content_is_modified(self, synced_about, store, detector):
        (synced_about / ABOUT_BODY).unlink()
        detector.detect_changes()
        write_file(synced_about, ABOUT_BODY, "# Rewritten\n")

        assert detector.detect_changes().modified == [ABOUT_BODY]

    def test_reappeared_modified_file_stays_modified(self, synced_about, store, detector):
        """An unpushed edit survives the file being removed and put back."""
        # Arrange
        write_file(synced_about, ABOUT_BODY, "# About, edited\n")
        assert detector.detect_changes().modified == [ABOUT_BODY]
        (synced_about / ABOUT_BODY).unlink()
        assert detector.detect_changes().deleted == [ABOUT_BODY]

        # Act
        write_file(synced_about, ABOUT_BODY, "# About, edited\n")
        report = detector.detect_changes()

        # Assert
        assert report.modified == [ABOUT_BODY]
        assert report.deleted == []
        assert store.get(ABOUT_BODY).status is FileStatus.MODIFIED

    def test_reappeared_new_file_stays_new(self, workspace, store, detector):
        write_item(workspace, "page", "draft", "# Draft\n")
        detector.detect_changes()
        (workspace / "content/page/draft/index.mdx").unlink()
        detector.detect_changes()
        write_item(workspace, "page", "draft", "# Draft\n")

        report = detector.detect_changes()

        assert report.new == ["content/page/draft/index.mdx"]
        assert store.get("content/page/draft/index.mdx").id == "local:content/page/draft/index.mdx"


class TestRenames(ChangeDetectorTestBase):
    """Test cases for rename inference."""

    def test_folder_rename(self, synced_about, store, detector):
        """Moving about/ to about-us/ is a rename of both files, keeping the id."""
        # Arrange
        os.rename(synced_about / "content/page/about", synced_about / "content/page/about-us")

        # Act
        report = detector.detect_changes()

        # Assert
        assert report.renamed == [
            RenamePair(ABOUT_META, ABOUT_US_META),
            RenamePair(ABOUT_BODY, ABOUT_US_BODY),
        ]
        assert report.deleted == []
        assert report.new == []
        body = store.get(ABOUT_US_BODY)
        assert body.id == "42"
        assert body.original_path == ABOUT_BODY
        assert store.get(ABOUT_BODY) is None
        assert store.get(ABOUT_US_META).related_entry_ids == [ABOUT_US_BODY]
        assert body.related_entry_ids == [ABOUT_US_META]

    def test_rename_back_restores_synced(self, synced_about, store, detector):
        """A -> B -> A ends with no pending changes."""
        os.rename(synced_about / "content/page/about", synced_about / "content/page/about-us")
        detector.detect_changes()
        os.rename(synced_about / "content/page/about-us", synced_about / "content/page/about")

        report = detector.detect_changes()

        assert report.has_changes is False
        assert store.get(ABOUT_BODY).status is FileStatus.SYNCED
        assert store.get(ABOUT_US_BODY) is None

    def test_rename_chain_keeps_first_path(self, synced_about, store, detector):
        os.rename(synced_about / "content/page/about", synced_about / "content/page/about-us")
        detector.detect_changes()
        os.rename(synced_about / "content/page/about-us", synced_about / "content/page/company")

        report = detector.detect_changes()

        assert RenamePair(ABOUT_BODY, "content/page/company/index.mdx") in report.renamed

    def test_renamed_folder_moved_away_and_back_stays_renamed(self, synced_about, store, detector):
        """A pending rename is not forgotten while its folder is briefly elsewhere."""
        # Arrange
        os.rename(synced_about / "content/page/about", synced_about / "content/page/about-us")
        detector.detect_changes()
        os.rename(synced_about / "content/page/about-us", synced_about / "parked")
        assert detector.detect_changes().deleted == [ABOUT_US_META, ABOUT_US_BODY]

        # Act
        os.rename(synced_about / "parked", synced_about / "content/page/about-us")
        report = detector.detect_changes()

        # Assert
        assert report.renamed == [
            RenamePair(ABOUT_META, ABOUT_US_META),
            RenamePair(ABOUT_BODY, ABOUT_US_BODY),
        ]
        assert report.deleted == []
        body = store.get(ABOUT_US_BODY)
        assert body.status is FileStatus.RENAMED
        assert body.original_state.status is FileStatus.SYNCED
        assert body.id == "42"

    def test_rename_with_edit_is_delete_and_new(self, synced_about, detector):
        """Renames are matched by exact content only."""
        (synced_about / ABOUT_BODY).unlink()
        write_item(synced_about, "page", "about-us", "# About us, edited\n")

        report = detector.detect_changes()

        assert report.renamed == []
        assert report.deleted == [ABOUT_BODY]
        assert report.new == [ABOUT_US_BODY]

    def test_media_move(self, workspace, store, detector):
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        detector.detect_changes()
        mark_all_synced(store)
        os.makedirs(workspace / "media/brand")
        os.rename(workspace / "media/shared/logo.png", workspace / "media/brand/logo.png")

        report = detector.detect_changes()

        assert report.renamed == [RenamePair("media/shared/logo.png", "media/brand/logo.png")]

    def test_hash_match_requires_same_file_type(self, workspace, store, detector):
        """A deleted body never turns into a media file with the same bytes."""
        write_item(workspace, "page", "x", "same bytes")
        detector.detect_changes()
        mark_all_synced(store)
        (workspace / "content/page/x/index.mdx").unlink()
        write_file(workspace, "media/same.png", "same bytes")

        report = detector.detect_changes()

        assert report.renamed == []
        assert report.new == ["media/same.png"]


class TestConflicts(ChangeDetectorTestBase):
    """Test cases for conflict handling."""

    def test_conflict_is_preserved(self, synced_about, store, detector):
        """Conflict entries stay in conflict even when edited."""
        store.get(ABOUT_BODY).state = Conflict("2024-01-01T00:00:00Z")
        store.touch()
        store.save()
        write_file(synced_about, ABOUT_BODY, "# Edited during conflict\n")

        report = detector.detect_changes()

        assert report.conflict == [ABOUT_BODY]
        assert report.modified == []
        assert store.get(ABOUT_BODY).status is FileStatus.CONFLICT
