"""Main CLI entry point for the content-sync command.

This module provides the Typer application that serves as the entry point
for the content-sync command-line tool. Global options (verbosity, log
directory, color, workspace root) are handled by the app callback; each
subcommand maps to one SyncCommand or InitCommand operation.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from content_sync.cli.errors import InitError
from content_sync.cli.init_command import InitCommand
from content_sync.cli.models import ExitCode
from content_sync.cli.output import OutputHandler
from content_sync.cli.sync_command import SyncCommand
from content_sync.local_state.layout import CONTENT_DIR, MEDIA_DIR
from content_sync.sync_engine.pull_synchronizer import KEEP_LOCAL, KEEP_REMOTE

app = typer.Typer(
    name="content-sync",
    help="""Bidirectional sync between a local content folder and a remote content API.

QUICK START:
  content-sync init --url https://cms.example.com   # Initialize workspace
  content-sync status                                # Show local changes
  content-sync pull                                  # Remote -> local
  content-sync push                                  # Local -> remote
  content-sync push --dry-run                        # Preview a push
  content-sync resolve <path> --keep local|remote    # Clear a conflict
  content-sync new post hello --title "Hello"        # Scaffold an item
  content-sync validate                              # Check before pushing
  content-sync watch                                 # Track renames live""",
    add_completion=False,
    rich_markup_mode=None,
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

APP_LOGGER_NAME = "content_sync"


@dataclass
class GlobalOptions:
    """Options shared by every subcommand."""
    root: Path
    verbosity: int = 0
    no_color: bool = False

    def output(self) -> OutputHandler:
        return OutputHandler(verbosity=self.verbosity, no_color=self.no_color)


def _configure_logging(verbosity: int, logdir: Optional[str] = None) -> None:
    """Configure logging based on verbosity level.

    Configures only the 'content_sync' namespace logger to avoid affecting
    third-party libraries. The root logger is left unchanged.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2=DEBUG)
        logdir: Optional directory for log files (creates timestamped log file)
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    # Repeated invocations in one process (tests) must not stack handlers
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()

    log_format = "%(asctime)s [%(levelname)8s] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(log_format, datefmt=date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if logdir:
        log_path = Path(logdir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"content-sync_{timestamp}.log"

        file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        file_formatter = logging.Formatter(file_format, datefmt=date_format)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        app_logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")


@app.callback()
def main_callback(
    ctx: typer.Context,
    root: Path = typer.Option(
        Path("."),
        "--root",
        help="Workspace root directory",
        metavar="DIR",
    ),
    logdir: Optional[str] = typer.Option(
        None,
        "--logdir",
        help="Directory for log files (creates timestamped log file)",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbosity",
        "-v",
        help="Verbosity level: 0=summary, 1=info, 2=debug",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
) -> None:
    """Bidirectional sync between a local content folder and a remote content API."""
    _configure_logging(verbosity, logdir)
    ctx.obj = GlobalOptions(root=root, verbosity=verbosity, no_color=no_color)


@app.command()
def init(
    ctx: typer.Context,
    url: str = typer.Option(
        ...,
        "--url",
        help="Base URL of the remote content API",
        metavar="URL",
    ),
    content_dir: str = typer.Option(
        CONTENT_DIR,
        "--content-dir",
        help="Directory holding <type>/<slug>/ content folders",
    ),
    media_dir: str = typer.Option(
        MEDIA_DIR,
        "--media-dir",
        help="Directory holding shared media",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration",
    ),
) -> None:
    """Initialize a workspace (.content-sync/config.yaml and empty index)."""
    options: GlobalOptions = ctx.obj
    output = options.output()

    try:
        output.info("Initializing workspace...")
        output.info(f"  Root: {options.root}")
        output.info(f"  URL: {url}")

        config_path = InitCommand(options.root).run(
            url=url, content_dir=content_dir, media_dir=media_dir, force=force
        )

        output.success("Workspace initialized successfully")
        output.info(f"  Config file: {config_path}")
        output.info("")
        output.info("Next steps:")
        output.info("  1. Set CONTENT_SYNC_TOKEN (or write .content-sync/token.json)")
        output.info("  2. Run 'content-sync pull' to fetch remote content")

    except InitError as e:
        logger.error(f"Initialization failed: {e}")
        output.error(f"Initialization failed: {e}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    raise typer.Exit(ExitCode.SUCCESS)


@app.command()
def status(ctx: typer.Context) -> None:
    """Detect local changes and show them."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.status())


@app.command()
def pull(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Stop after this many seconds (completed items are kept)",
    ),
) -> None:
    """Fetch remote content into the workspace."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.pull(timeout=timeout))


@app.command()
def push(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "--dryrun",
        help="Preview changes without contacting the remote",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Stop after this many seconds (completed items are kept)",
    ),
) -> None:
    """Push local changes to the remote."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.push(dry_run=dry_run, timeout=timeout))


@app.command()
def resolve(
    ctx: typer.Context,
    path: str = typer.Argument(
        ...,
        help="Body or metadata path of the conflicted item (relative to the root)",
    ),
    keep: str = typer.Option(
        ...,
        "--keep",
        help="Side to keep: local or remote",
    ),
) -> None:
    """Clear a conflict by choosing the local or the remote version."""
    options: GlobalOptions = ctx.obj
    output = options.output()
    if keep not in (KEEP_LOCAL, KEEP_REMOTE):
        output.error(f"--keep must be '{KEEP_LOCAL}' or '{KEEP_REMOTE}', got '{keep}'")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    command = SyncCommand(root=options.root, output_handler=output)
    raise typer.Exit(command.resolve(path, keep))


@app.command()
def new(
    ctx: typer.Context,
    content_type: str = typer.Argument(
        ...,
        metavar="TYPE",
        help="Content type folder (page, post, ...)",
    ),
    slug: str = typer.Argument(
        ...,
        metavar="SLUG",
        help="Folder name of the new item",
    ),
    title: str = typer.Option(
        ...,
        "--title",
        help="Title written to the body heading and the metadata",
    ),
) -> None:
    """Create a content item skeleton (index.mdx and index.json)."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.new_item(content_type, slug, title))


@app.command()
def validate(ctx: typer.Context) -> None:
    """Check every content item the way push does before sending it."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.validate())


@app.command()
def watch(ctx: typer.Context) -> None:
    """Watch the workspace and record renames as they happen."""
    options: GlobalOptions = ctx.obj
    command = SyncCommand(root=options.root, output_handler=options.output())
    raise typer.Exit(command.watch())


if __name__ == "__main__":
    app()
