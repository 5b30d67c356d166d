"""Command-line interface for content sync.

This package provides the `content-sync` CLI tool: workspace
initialization, change status, pull, push, conflict resolution and the
rename-tracking watcher, with Rich terminal output and exit codes.
"""

from .errors import CLIError, InitError
from .init_command import InitCommand
from .models import ExitCode
from .output import OutputHandler
from .sync_command import SyncCommand

__all__ = [
    'CLIError',
    'ExitCode',
    'InitCommand',
    'InitError',
    'OutputHandler',
    'SyncCommand',
]
