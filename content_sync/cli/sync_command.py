"""Sync command orchestration for CLI.

This module provides the SyncCommand class that wires the workspace
configuration, the index store, the remote API clients and the sync engine
together for the CLI commands. Commands that touch the index run under
the workspace operation lock; every command returns an ExitCode and
exceptions from the lower packages are translated to exit codes here.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

import requests

from content_sync.local_state.config_loader import ConfigLoader
from content_sync.local_state.errors import (
    ConfigError,
    FilesystemError,
    IndexCorruptedError,
    NotInitializedError,
    OperationInProgressError,
)
from content_sync.local_state.index_store import IndexStore
from content_sync.local_state.models import FileStatus, WorkspaceConfig
from content_sync.remote_client.api_wrapper import ContentAPI, MediaAPI
from content_sync.remote_client.auth import Authenticator
from content_sync.remote_client.errors import (
    APIAccessError,
    APIUnreachableError,
    AuthenticationRequiredError,
    SyncError,
)
from content_sync.sync_engine.cancellation import CancellationToken
from content_sync.sync_engine.change_detector import ChangeDetector
from content_sync.sync_engine.content_files import scaffold_item
from content_sync.sync_engine.content_validator import ContentValidator
from content_sync.sync_engine.errors import BatchAbortedError
from content_sync.sync_engine.file_watcher import WorkspaceWatcher
from content_sync.sync_engine.models import ChangeReport
from content_sync.sync_engine.pull_synchronizer import PullSynchronizer
from content_sync.sync_engine.reconciler import Reconciler
from content_sync.sync_engine.relationship_manager import RelationshipManager
from .models import ExitCode
from .output import OutputHandler

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Seconds between checks of the watch and batch loops
POLL_INTERVAL = 0.5


class SyncCommand:
    """Orchestrates the sync workflow for the CLI.

    Dependencies are built lazily from .content-sync/config.yaml; tests can
    inject an authenticator, API clients or a requests session instead.

    Example:
        >>> output = OutputHandler(verbosity=1)
        >>> command = SyncCommand(root="./site", output_handler=output)
        >>> exit_code = command.push(dry_run=True)
        >>> sys.exit(exit_code)
    """

    def __init__(
        self,
        root: Union[str, Path] = ".",
        output_handler: Optional[OutputHandler] = None,
        authenticator: Optional[Authenticator] = None,
        content_api: Optional[ContentAPI] = None,
        media_api: Optional[MediaAPI] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize sync command with dependencies.

        Args:
            root: Workspace root directory
            output_handler: OutputHandler for terminal output (optional)
            authenticator: Authenticator for the remote API (optional)
            content_api: Content API client (optional)
            media_api: Media API client (optional)
            session: requests session shared by the API clients (optional)
        """
        self.root = Path(root)
        self.output_handler = output_handler or OutputHandler()
        self.authenticator = authenticator
        self.content_api = content_api
        self.media_api = media_api
        self.session = session

        self.config: Optional[WorkspaceConfig] = None
        self.store: Optional[IndexStore] = None
        self.detector: Optional[ChangeDetector] = None
        self.reconciler: Optional[Reconciler] = None
        self.puller: Optional[PullSynchronizer] = None

    # Commands

    def status(self) -> ExitCode:
        """Detect local changes and print the report."""
        def action() -> ExitCode:
            with self.store.operation_lock(self.config.lock_timeout):
                report = self.detector.detect_changes(self.config.tracked_roots)
            self.output_handler.print_report(report)
            return ExitCode.CONFLICTS if report.conflict else ExitCode.SUCCESS

        return self._execute("status", action, remote=False)

    def push(self, dry_run: bool = False, timeout: Optional[float] = None) -> ExitCode:
        """Detect local changes and push them to the remote.

        Args:
            dry_run: Print the change report without contacting the remote
            timeout: Optional deadline in seconds for the whole batch
        """
        def action() -> ExitCode:
            with self.store.operation_lock(self.config.lock_timeout):
                report = self.detector.detect_changes(self.config.tracked_roots)
                self.output_handler.print_report(report)
                if dry_run:
                    self.output_handler.print("\n[bold]Dry run: nothing was pushed.[/bold]")
                    return ExitCode.CONFLICTS if report.conflict else ExitCode.SUCCESS
                if not report.has_changes:
                    return ExitCode.CONFLICTS if report.conflict else ExitCode.SUCCESS

                result = self._run_cancellable(
                    lambda token: self.reconciler.push(report, token), timeout
                )
            self.output_handler.print_push_summary(result)

            if result.aborted:
                return ExitCode.AUTH_ERROR
            if result.errors or result.cancelled:
                return ExitCode.GENERAL_ERROR
            return ExitCode.CONFLICTS if self._has_conflicts(report) else ExitCode.SUCCESS

        return self._execute("push", action, remote=not dry_run)

    def pull(self, timeout: Optional[float] = None) -> ExitCode:
        """Refresh local state, then pull the remote snapshot.

        Args:
            timeout: Optional deadline in seconds for the whole pull
        """
        def action() -> ExitCode:
            with self.store.operation_lock(self.config.lock_timeout):
                # Bring index statuses up to date so local edits are seen as changes
                self.detector.detect_changes(self.config.tracked_roots)
                with self.output_handler.spinner("Pulling remote content..."):
                    result = self._run_cancellable(self.puller.pull, timeout)
            self.output_handler.print_pull_summary(result)

            if result.cancelled or result.errors:
                return ExitCode.GENERAL_ERROR
            return ExitCode.CONFLICTS if result.conflicts or self._has_conflicts() else ExitCode.SUCCESS

        return self._execute("pull", action, remote=True)

    def resolve(self, path: str, keep: str) -> ExitCode:
        """Clear a conflict on a content item.

        Args:
            path: Body or metadata path of the conflicted item, relative to root
            keep: "local" or "remote"
        """
        def action() -> ExitCode:
            with self.store.operation_lock(self.config.lock_timeout):
                changed = self.puller.resolve_conflict(path, keep)
            if not changed:
                self.output_handler.warning(f"No conflict recorded for {path}")
                return ExitCode.GENERAL_ERROR
            for changed_path in changed:
                self.output_handler.success(f"Resolved {changed_path} (keeping {keep})")
            if keep == "local":
                self.output_handler.info("Run 'content-sync push' to send the local version")
            else:
                self.output_handler.info("Run 'content-sync pull' to restore the remote version")
            return ExitCode.SUCCESS

        return self._execute("resolve", action, remote=False)

    def new_item(self, content_type: str, slug: str, title: str) -> ExitCode:
        """Scaffold content/<type>/<slug>/ with a body and a metadata file."""
        def action() -> ExitCode:
            body_rel, meta_rel = scaffold_item(
                self.root, content_type, slug, title, content_dir=self.config.content_dir
            )
            self.output_handler.success(f"Created {body_rel}")
            self.output_handler.success(f"Created {meta_rel}")
            self.output_handler.info("Fill in description and author before pushing")
            return ExitCode.SUCCESS

        return self._execute("new", action, remote=False)

    def validate(self) -> ExitCode:
        """Run the pre-push checks over every content item."""
        def action() -> ExitCode:
            validator = ContentValidator(self.root, self.config.content_dir, self.config.media_dir)
            problems = validator.validate_all()
            self.output_handler.print_problems(problems)
            if any(problem.is_error for problem in problems):
                return ExitCode.GENERAL_ERROR
            return ExitCode.SUCCESS

        return self._execute("validate", action, remote=False)

    def watch(self, stop_event: Optional[threading.Event] = None) -> ExitCode:
        """Watch the workspace until interrupted.

        Args:
            stop_event: Optional event that ends the watch loop when set
        """
        def action() -> ExitCode:
            watcher = WorkspaceWatcher(
                self.store,
                self.root,
                rename_window=self.config.rename_window,
                content_dir=self.config.content_dir,
                media_dir=self.config.media_dir,
                lock_timeout=self.config.lock_timeout,
            )
            event = stop_event or threading.Event()
            watcher.start()
            self.output_handler.print(f"Watching {self.root.resolve()} (Ctrl+C to stop)")
            try:
                while not event.wait(POLL_INTERVAL):
                    for path in watcher.coalescer.flush_expired():
                        self.output_handler.info(f"Deleted: {path}")
            except KeyboardInterrupt:
                self.output_handler.print("Stopping watcher...")
            finally:
                watcher.stop()
            return ExitCode.SUCCESS

        return self._execute("watch", action, remote=False)

    # Wiring

    def _setup(self, remote: bool) -> None:
        if self.config is None:
            self.config = ConfigLoader.load_workspace(self.root)
            logger.info(f"Loaded workspace config for {self.config.url}")
        if self.store is None:
            self.store = IndexStore(self.root)
        relationships = RelationshipManager(self.store)
        if self.detector is None:
            self.detector = ChangeDetector(
                self.store,
                self.root,
                relationships=relationships,
                content_dir=self.config.content_dir,
                media_dir=self.config.media_dir,
                max_workers=self.config.max_workers,
            )

        if self.authenticator is None:
            self.authenticator = Authenticator(url=self.config.url, state_dir=self.store.paths.state_dir)
        if remote:
            # Fail before taking the lock when no credential is configured
            self.authenticator.get_credentials()
        if self.content_api is None:
            self.content_api = ContentAPI(
                self.authenticator, timeout=self.config.request_timeout, session=self.session
            )
        if self.media_api is None:
            self.media_api = MediaAPI(
                self.authenticator, timeout=self.config.request_timeout, session=self.session
            )
        if self.reconciler is None:
            self.reconciler = Reconciler(
                self.store, self.root, self.content_api, self.media_api,
                relationships=relationships,
                content_dir=self.config.content_dir,
                media_dir=self.config.media_dir,
            )
        if self.puller is None:
            self.puller = PullSynchronizer(
                self.store, self.root, self.content_api, self.media_api,
                relationships=relationships,
                content_dir=self.config.content_dir,
                media_dir=self.config.media_dir,
            )

    def _run_cancellable(
        self,
        batch: Callable[[CancellationToken], T],
        timeout: Optional[float] = None,
    ) -> T:
        """Run a batch in a worker thread so Ctrl+C cancels it between items."""
        token = CancellationToken(timeout=timeout)
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(batch, token)
            while True:
                try:
                    return future.result(timeout=POLL_INTERVAL)
                except FutureTimeoutError:
                    continue
                except KeyboardInterrupt:
                    token.cancel()
                    self.output_handler.warning("Cancelling after the current item...")

    def _has_conflicts(self, report: Optional[ChangeReport] = None) -> bool:
        if report is not None and report.conflict:
            return True
        return any(entry.status is FileStatus.CONFLICT for entry in self.store.entries())

    def _execute(self, name: str, action: Callable[[], ExitCode], remote: bool) -> ExitCode:
        try:
            self._setup(remote)
            return action()

        except NotInitializedError as e:
            logger.error(f"{name} failed: {e}")
            self.output_handler.error(str(e))
            self.output_handler.print("Run 'content-sync init --url <URL>' to create a workspace.")
            return ExitCode.GENERAL_ERROR

        except (AuthenticationRequiredError, BatchAbortedError) as e:
            logger.error(f"Authentication failed: {e}")
            self.output_handler.error(f"Authentication failed: {e}")
            self.output_handler.info(
                "Check CONTENT_SYNC_TOKEN or .content-sync/token.json"
            )
            return ExitCode.AUTH_ERROR

        except (APIUnreachableError, APIAccessError) as e:
            logger.error(f"API error: {e}")
            self.output_handler.error(f"API error: {e}")
            self.output_handler.info("Check your internet connection and try again")
            return ExitCode.NETWORK_ERROR

        except (ConfigError, IndexCorruptedError, OperationInProgressError, FilesystemError) as e:
            logger.error(f"{name} failed: {e}")
            self.output_handler.error(str(e))
            return ExitCode.GENERAL_ERROR

        except ValueError as e:
            logger.error(f"{name} failed: {e}")
            self.output_handler.error(str(e))
            return ExitCode.GENERAL_ERROR

        except SyncError as e:
            logger.error(f"{name} failed: {e}")
            self.output_handler.error(f"Error: {e}")
            return ExitCode.GENERAL_ERROR

        except Exception as e:
            logger.exception(f"Unexpected error during {name}")
            self.output_handler.error(f"Unexpected error: {e}")
            return ExitCode.GENERAL_ERROR
