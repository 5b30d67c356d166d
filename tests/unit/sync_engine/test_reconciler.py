"""Unit tests for sync_engine.reconciler module."""

import json
import logging
import os
import shutil

import pytest

from content_sync.local_state.models import Conflict, FileStatus
from content_sync.remote_client.errors import AuthenticationRequiredError, ValidationRejectedError
from content_sync.sync_engine.cancellation import CancellationToken
from content_sync.sync_engine.change_detector import ChangeDetector
from content_sync.sync_engine.reconciler import Reconciler
from tests.fixtures.sample_content import OTHER_PNG_BYTES, PNG_BYTES, valid_metadata
from tests.helpers.workspace import read_json, write_file, write_item

ABOUT_BODY = "content/page/about/index.mdx"
ABOUT_META = "content/page/about/index.json"


def auth_error():
    return AuthenticationRequiredError("https://cms.example.com", "HTTP 401")


class ReconcilerTestBase:
    """Base class wiring a detector and reconciler to the fake remote."""

    @pytest.fixture
    def detector(self, store, workspace):
        return ChangeDetector(store, workspace)

    @pytest.fixture
    def reconciler(self, store, workspace, content_api, media_api):
        return Reconciler(store, workspace, content_api, media_api)

    @pytest.fixture
    def push(self, detector, reconciler):
        """Detect and push in one step, like the push command."""
        def _push(token=None):
            return reconciler.push(detector.detect_changes(), token)
        return _push

    @pytest.fixture
    def pushed_about(self, workspace, push, content_api):
        """The about page created remotely as id 100."""
        write_item(workspace, "page", "about", "# About\n", valid_metadata())
        push()
        content_api.calls.clear()
        return workspace


class TestCreateAndUpdate(ReconcilerTestBase):
    """Test cases for pushing new and modified content."""

    def test_new_item_is_created(self, workspace, store, content_api, push):
        """Body and metadata are sent as one item and the id is written back."""
        # Arrange
        write_item(workspace, "page", "about", "# About\n", valid_metadata(tags=["company"]))

        # Act
        result = push()

        # Assert
        assert result.created == 1
        assert result.errors == 0
        assert content_api.calls == [("create", "page/about")]
        remote = content_api.items["100"]
        assert remote.slug == "about"
        assert remote.type == "page"
        assert remote.body == "# About\n"
        assert remote.tags == ["company"]
        assert remote.language == "en"
        assert remote.allow_comments is True
        assert remote.published_at is not None
        assert read_json(workspace, ABOUT_META)["id"] == "100"
        for path in (ABOUT_BODY, ABOUT_META):
            entry = store.get(path)
            assert entry.status is FileStatus.SYNCED
            assert entry.id == "100"
            assert entry.last_modified_remote == remote.updated_at

    def test_second_push_creates_nothing(self, pushed_about, content_api, push):
        """Writing the id back does not make the item look modified."""
        result = push()

        assert result.created == 0
        assert content_api.calls == []
        assert len(content_api.items) == 1

    def test_modified_body_is_updated_in_place(self, pushed_about, content_api, push):
        write_file(pushed_about, ABOUT_BODY, "# About us\n")

        result = push()

        assert result.updated == 1
        assert content_api.calls == [("update", "100")]
        assert content_api.items["100"].body == "# About us\n"

    def test_modified_metadata_is_updated(self, pushed_about, content_api, push):
        metadata = read_json(pushed_about, ABOUT_META)
        metadata["title"] = "About Us"
        write_file(pushed_about, ABOUT_META, json.dumps(metadata))

        result = push()

        assert result.updated == 1
        assert content_api.items["100"].title == "About Us"

    def test_body_without_metadata_is_rejected(self, workspace, store, content_api, push):
        write_item(workspace, "page", "bare", "# Bare\n")

        result = push()

        assert result.errors == 1
        assert result.failures[0].kind == "ValidationRejectedError"
        assert content_api.calls == []
        assert store.get("content/page/bare/index.mdx").status is FileStatus.NEW


class TestFailureHandling(ReconcilerTestBase):
    """Test cases for per-item failures and batch aborts."""

    def test_validation_failure_does_not_stop_batch(self, workspace, store, content_api, push):
        write_item(workspace, "page", "about", "# About\n", valid_metadata(author=""))
        write_item(workspace, "page", "contact", "# Contact\n", valid_metadata("Contact"))

        result = push()

        assert result.created == 1
        assert result.errors == 1
        failure = result.failures[0]
        assert failure.path == ABOUT_BODY
        assert "author" in failure.message
        assert store.get(ABOUT_BODY).status is FileStatus.NEW
        assert content_api.calls == [("create", "page/contact")]

    def test_auth_failure_refreshes_once_and_retries(self, workspace, content_api, authenticator, push):
        original = content_api.create
        attempts = []

        def flaky_create(item):
            attempts.append(item.scope)
            if len(attempts) == 1:
                raise auth_error()
            return original(item)

        content_api.create = flaky_create
        write_item(workspace, "page", "about", "# About\n", valid_metadata())

        result = push()

        assert result.created == 1
        assert result.aborted is False
        assert attempts == ["page/about", "page/about"]
        authenticator.refresh.assert_called_once()

    def test_second_auth_failure_aborts_batch(self, workspace, store, content_api, authenticator, push):
        """Remaining items are not attempted after the batch is aborted."""
        attempts = []

        def rejecting_create(item):
            attempts.append(item.scope)
            raise auth_error()

        content_api.create = rejecting_create
        write_item(workspace, "page", "about", "# About\n", valid_metadata())
        write_item(workspace, "page", "contact", "# Contact\n", valid_metadata("Contact"))

        result = push()

        assert result.aborted is True
        assert attempts == ["page/about", "page/about"]
        authenticator.refresh.assert_called_once()
        assert store.get("content/page/contact/index.mdx").status is FileStatus.NEW

    def test_update_of_vanished_item_is_recorded(self, pushed_about, store, content_api, push):
        del content_api.items["100"]
        write_file(pushed_about, ABOUT_BODY, "# Changed\n")

        result = push()

        assert result.errors == 1
        assert result.failures[0].kind == "RemoteNotFoundError"
        assert store.get(ABOUT_BODY).status is FileStatus.MODIFIED

    def test_cancelled_before_start(self, workspace, content_api, push):
        write_item(workspace, "page", "about", "# About\n", valid_metadata())
        token = CancellationToken()
        token.cancel()

        result = push(token)

        assert result.cancelled is True
        assert content_api.calls == []

    def test_conflicts_are_never_pushed(self, pushed_about, store, content_api, push):
        store.get(ABOUT_BODY).state = Conflict("2024-01-01T00:00:00Z")
        store.touch()
        store.save()
        metadata = read_json(pushed_about, ABOUT_META)
        metadata["title"] = "Edited during conflict"
        write_file(pushed_about, ABOUT_META, json.dumps(metadata))

        push()

        assert content_api.calls == []


class TestDeletions(ReconcilerTestBase):
    """Test cases for pushing deletions."""

    def test_deleted_item_is_deleted_remotely(self, pushed_about, store, content_api, push):
        shutil.rmtree(pushed_about / "content/page/about")

        result = push()

        assert result.deleted == 1
        assert content_api.calls == [("delete", "100")]
        assert store.get(ABOUT_BODY) is None
        assert store.get(ABOUT_META) is None

    def test_already_deleted_remotely_counts_as_success(self, pushed_about, store, content_api, push):
        del content_api.items["100"]
        shutil.rmtree(pushed_about / "content/page/about")

        result = push()

        assert result.errors == 0
        assert store.entries() == []

    def test_never_pushed_item_is_dropped_silently(self, workspace, store, content_api, detector, push):
        write_item(workspace, "page", "draft", "# Draft\n", valid_metadata())
        detector.detect_changes()
        shutil.rmtree(workspace / "content/page/draft")

        result = push()

        assert content_api.calls == []
        assert result.deleted == 0
        assert store.entries() == []

    def test_metadata_deleted_alone_is_kept(self, pushed_about, store, content_api, push):
        """Deleting only the metadata never deletes the remote item."""
        (pushed_about / ABOUT_META).unlink()

        push()

        assert content_api.calls == []
        assert store.get(ABOUT_META).status is FileStatus.DELETED


class TestRenamesAndMedia(ReconcilerTestBase):
    """Test cases for renames and media uploads."""

    def test_renamed_item_is_updated_not_recreated(self, pushed_about, store, content_api, push):
        os.rename(pushed_about / "content/page/about", pushed_about / "content/page/about-us")

        result = push()

        assert result.renamed == 1
        assert result.created == 0
        assert content_api.calls == [("update", "100")]
        assert content_api.items["100"].slug == "about-us"
        assert store.get("content/page/about-us/index.mdx").status is FileStatus.SYNCED

    def test_media_uploaded_before_referencing_body(self, workspace, store, content_api, media_api, push):
        """Bodies reach the remote with media URLs, files keep local references."""
        # Arrange
        media_api.calls = content_api.calls
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        body = "![Logo](../../../media/shared/logo.png)\n![Team](./team.jpg)\n"
        write_item(workspace, "page", "about", body, valid_metadata())
        write_file(workspace, "content/page/about/team.jpg", b"jpeg")

        # Act
        result = push()

        # Assert
        assert result.media_uploaded == 2
        assert [name for name, _ in content_api.calls] == ["upload", "upload", "create"]
        assert content_api.items["100"].body == (
            "![Logo](/api/media/shared/logo.png)\n![Team](/api/media/page/about/team.jpg)\n"
        )
        assert (workspace / ABOUT_BODY).read_text() == body
        assert store.get("media/shared/logo.png").id == "/api/media/shared/logo.png"
        assert ABOUT_BODY in store.get("media/shared/logo.png").related_entry_ids

    def test_cover_image_is_rewritten(self, workspace, content_api, media_api, push):
        write_item(workspace, "post", "hello", "# Hello\n", valid_metadata("Hello", coverImageUrl="./hero.png"))
        write_file(workspace, "content/post/hello/hero.png", PNG_BYTES)

        push()

        assert content_api.items["100"].cover_image_url == "/api/media/post/hello/hero.png"
        assert media_api.files["post/hello/hero.png"] == PNG_BYTES

    def test_moved_media_is_reuploaded(self, workspace, store, media_api, push):
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        push()
        os.makedirs(workspace / "media/brand")
        os.rename(workspace / "media/shared/logo.png", workspace / "media/brand/logo.png")

        result = push()

        assert result.renamed == 1
        assert media_api.calls[-2:] == [("upload", "brand/logo.png"), ("delete", "shared/logo.png")]
        assert "shared/logo.png" not in media_api.files
        assert store.get("media/brand/logo.png").status is FileStatus.SYNCED

    def test_push_order(self, pushed_about, workspace, content_api, media_api, push):
        """Deletions, then renames, then media, then content."""
        write_item(workspace, "page", "old", "# Old\n", valid_metadata("Old"))
        push()
        content_api.calls.clear()
        media_api.calls = content_api.calls

        shutil.rmtree(workspace / "content/page/old")
        os.rename(workspace / "content/page/about", workspace / "content/page/about-us")
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        write_item(workspace, "page", "contact", "![Logo](../../../media/shared/logo.png)\n",
                   valid_metadata("Contact"))

        push()

        assert content_api.calls == [
            ("delete", "101"),
            ("update", "100"),
            ("upload", "shared/logo.png"),
            ("create", "page/contact"),
        ]

    def test_renamed_folder_moves_media_before_body(self, workspace, store, content_api, media_api, push):
        """Co-located media are re-uploaded first so the body gets their new URL."""
        # Arrange
        write_item(workspace, "page", "about", "# About\n\n![Team](./team.jpg)\n", valid_metadata())
        write_file(workspace, "content/page/about/team.jpg", PNG_BYTES)
        push()
        content_api.calls.clear()
        media_api.calls = content_api.calls
        os.rename(workspace / "content/page/about", workspace / "content/page/about-us")

        # Act
        result = push()

        # Assert
        assert result.errors == 0
        assert result.renamed == 2
        assert content_api.calls == [
            ("upload", "page/about-us/team.jpg"),
            ("delete", "page/about/team.jpg"),
            ("update", "100"),
        ]
        assert content_api.items["100"].body == "# About\n\n![Team](/api/media/page/about-us/team.jpg)\n"

    def test_renamed_item_waits_for_modified_media(self, workspace, store, content_api, media_api, push):
        """A rename whose media changed too is pushed after the media upload."""
        write_file(workspace, "media/shared/logo.png", PNG_BYTES)
        write_item(workspace, "page", "about", "![Logo](../../../media/shared/logo.png)\n", valid_metadata())
        push()
        content_api.calls.clear()
        media_api.calls = content_api.calls
        os.rename(workspace / "content/page/about", workspace / "content/page/about-us")
        write_file(workspace, "media/shared/logo.png", OTHER_PNG_BYTES)

        result = push()

        assert result.errors == 0
        assert result.renamed == 1
        assert result.media_uploaded == 1
        assert content_api.calls == [("upload", "shared/logo.png"), ("update", "100")]
        assert content_api.items["100"].slug == "about-us"

    def test_move_within_folder_is_synced_without_remote_call(self, pushed_about, store, content_api, push):
        """Renaming files inside the item folder keeps type and slug, so nothing is sent."""
        folder = pushed_about / "content/page/about"
        os.rename(folder / "index.mdx", folder / "page.mdx")
        os.rename(folder / "index.json", folder / "page.json")

        result = push()

        assert content_api.calls == []
        assert result.errors == 0
        for path in ("content/page/about/page.mdx", "content/page/about/page.json"):
            entry = store.get(path)
            assert entry.status is FileStatus.SYNCED
            assert entry.id == "100"
            assert entry.original_path is None


class TestMediaFailures(ReconcilerTestBase):
    """Test cases for content whose media cannot be uploaded."""

    def test_content_is_held_back_when_its_media_upload_fails(
        self, workspace, store, content_api, media_api, push
    ):
        """No item is created with a media URL that does not exist remotely."""
        # Arrange
        def rejecting_upload(data, filename, scope):
            raise ValidationRejectedError("upload", "Unsupported image")

        media_api.upload = rejecting_upload
        write_item(workspace, "page", "about", "# About\n\n![Team](./team.jpg)\n", valid_metadata())
        write_file(workspace, "content/page/about/team.jpg", PNG_BYTES)

        # Act
        result = push()

        # Assert
        assert result.created == 0
        assert result.errors == 2
        assert [f.path for f in result.failures] == ["content/page/about/team.jpg", ABOUT_BODY]
        assert "content/page/about/team.jpg is not uploaded" in result.failures[1].message
        assert content_api.calls == []
        assert store.get(ABOUT_BODY).status is FileStatus.NEW
        assert store.get("content/page/about/team.jpg").status is FileStatus.NEW

    def test_item_is_created_once_media_upload_succeeds(self, workspace, store, content_api, media_api, push):
        def rejecting_upload(data, filename, scope):
            raise ValidationRejectedError("upload", "Unsupported image")

        media_api.upload = rejecting_upload
        write_item(workspace, "page", "about", "# About\n\n![Team](./team.jpg)\n", valid_metadata())
        write_file(workspace, "content/page/about/team.jpg", PNG_BYTES)
        push()
        del media_api.upload

        result = push()

        assert result.errors == 0
        assert result.media_uploaded == 1
        assert result.created == 1
        assert content_api.items["100"].body == "# About\n\n![Team](/api/media/page/about/team.jpg)\n"

    def test_cover_image_must_be_uploaded(self, workspace, store, content_api, media_api, push):
        def rejecting_upload(data, filename, scope):
            raise ValidationRejectedError("upload", "Too large")

        media_api.upload = rejecting_upload
        write_item(workspace, "post", "hello", "# Hello\n", valid_metadata("Hello", coverImageUrl="./hero.png"))
        write_file(workspace, "content/post/hello/hero.png", PNG_BYTES)

        result = push()

        assert result.created == 0
        assert "content/post/hello/hero.png is not uploaded" in result.failures[-1].message


class TestPrePushValidation(ReconcilerTestBase):
    """Test cases for the local checks run before an item is sent."""

    def test_reference_to_missing_media_is_rejected(self, workspace, store, content_api, push):
        write_item(workspace, "page", "about", "# About\n\n![Team](./team.jpg)\n", valid_metadata())

        result = push()

        assert result.errors == 1
        assert result.failures[0].kind == "ValidationRejectedError"
        assert "Media file not found: content/page/about/team.jpg" in result.failures[0].message
        assert content_api.calls == []
        assert store.get(ABOUT_BODY).status is FileStatus.NEW

    def test_invalid_published_at_is_rejected(self, workspace, content_api, push):
        write_item(workspace, "page", "about", "# About\n", valid_metadata(publishedAt="next tuesday"))

        result = push()

        assert result.errors == 1
        assert "publishedAt" in result.failures[0].message
        assert content_api.calls == []

    def test_one_invalid_item_does_not_stop_the_batch(self, workspace, content_api, push):
        write_item(workspace, "page", "about", "# About\n", valid_metadata(publishedAt="not a date"))
        write_item(workspace, "page", "contact", "# Contact\n", valid_metadata("Contact"))

        result = push()

        assert result.errors == 1
        assert result.created == 1
        assert content_api.calls == [("create", "page/contact")]

    def test_warnings_do_not_block_push(self, workspace, content_api, push, caplog):
        """Short titles and bodies without a heading are reported only."""
        write_item(workspace, "page", "faq", "Questions and answers.\n", valid_metadata("Q"))

        with caplog.at_level(logging.WARNING, logger="content_sync"):
            result = push()

        assert result.created == 1
        assert result.errors == 0
        assert "at least one heading" in caplog.text
        assert "title is too short" in caplog.text
