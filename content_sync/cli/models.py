"""Data models for CLI operations."""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes for CLI operations.

    - SUCCESS (0): Operation completed successfully
    - GENERAL_ERROR (1): Configuration, index or per-item failures
    - CONFLICTS (2): Unresolved conflicts remain in the workspace
    - AUTH_ERROR (3): Missing or rejected credentials
    - NETWORK_ERROR (4): Remote API unreachable

    Example:
        >>> raise typer.Exit(ExitCode.CONFLICTS)
    """
    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFLICTS = 2
    AUTH_ERROR = 3
    NETWORK_ERROR = 4
