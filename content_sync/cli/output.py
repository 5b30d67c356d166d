"""Terminal output handling using Rich library.

This module provides the OutputHandler class for all CLI terminal output:
colored status messages, a spinner for network-bound steps, and the
change report, push/pull summaries and validation findings. Supports verbosity levels and the
--no-color flag.
"""

from contextlib import contextmanager
from typing import Iterator, List

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.table import Table

from content_sync.sync_engine.content_validator import ValidationProblem
from content_sync.sync_engine.models import ChangeReport, ItemFailure, PullResult, PushResult


class OutputHandler:
    """Handles all terminal output using Rich library.

    Attributes:
        verbosity: Verbosity level (0=summary, 1=info, 2=debug)
        console: Rich Console instance for output

    Example:
        >>> handler = OutputHandler(verbosity=1, no_color=False)
        >>> handler.success("Pushed 3 items")
        >>> with handler.spinner("Fetching remote content..."):
        ...     result = puller.pull()
    """

    def __init__(self, verbosity: int = 0, no_color: bool = False):
        """Initialize output handler.

        Args:
            verbosity: Verbosity level (0=summary, 1=info, 2=debug)
            no_color: Disable color output if True
        """
        self.verbosity = verbosity
        self.console = Console(
            no_color=no_color,
            highlight=False,
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}", style="red")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")

    def info(self, message: str) -> None:
        """Display info message (only if verbosity >= 1)."""
        if self.verbosity >= 1:
            self.console.print(message)

    def debug(self, message: str) -> None:
        """Display debug message (only if verbosity >= 2)."""
        if self.verbosity >= 2:
            self.console.print(f"[dim]{message}[/dim]")

    def print(self, message: str) -> None:
        self.console.print(message)

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Display spinner for single operations.

        Args:
            message: Message to display with spinner
        """
        spinner = Spinner("dots", text=message)
        with Live(spinner, console=self.console, refresh_per_second=10, transient=True):
            yield

    def print_report(self, report: ChangeReport) -> None:
        """Display the local change report as a table.

        Args:
            report: Report produced by the change detector
        """
        if not report.has_changes and not report.conflict:
            self.console.print("[green]Workspace is in sync. No local changes detected.[/green]")
            return

        table = Table(title="Local changes", show_lines=False)
        table.add_column("Status", style="bold")
        table.add_column("Path")

        for path in report.new:
            table.add_row("[green]new[/green]", path)
        for path in report.modified:
            table.add_row("[yellow]modified[/yellow]", path)
        for path in report.deleted:
            table.add_row("[red]deleted[/red]", path)
        for pair in report.renamed:
            table.add_row("[blue]renamed[/blue]", f"{pair.from_path} → {pair.to_path}")
        for path in report.conflict:
            table.add_row("[red]⚡ conflict[/red]", path)

        self.console.print(table)

    def print_push_summary(self, result: PushResult) -> None:
        """Display push outcome with color coding.

        Args:
            result: Result of the push batch
        """
        self.console.print("\n[bold]Push Summary:[/bold]")
        counts = [
            ("[green]+[/green] Created", result.created),
            ("[green]↑[/green] Updated", result.updated),
            ("[blue]→[/blue] Renamed", result.renamed),
            ("[red]-[/red] Deleted", result.deleted),
            ("[cyan]▣[/cyan] Media uploaded", result.media_uploaded),
        ]
        for label, count in counts:
            if count > 0:
                self.console.print(f"  {label}: {count}")

        self.print_failures(result.failures)

        if result.aborted:
            self.console.print("\n[red]Push aborted: authentication failed after refresh[/red]")
        elif result.cancelled:
            self.console.print("\n[yellow]Push cancelled; completed items were kept[/yellow]")
        elif result.errors:
            self.console.print(f"\n[red]Push completed with {result.errors} error(s)[/red]")
        elif result.created + result.updated + result.renamed + result.deleted + result.media_uploaded == 0:
            self.console.print("\n[green]Nothing to push.[/green]")
        else:
            self.console.print("\n[green]Push completed successfully[/green]")

    def print_pull_summary(self, result: PullResult) -> None:
        """Display pull outcome with color coding.

        Args:
            result: Result of the pull
        """
        self.console.print("\n[bold]Pull Summary:[/bold]")
        self.console.print(f"  [dim]─[/dim] Remote items: {result.items_fetched}")
        if result.files_written:
            self.console.print(f"  [blue]↓[/blue] Files written: {result.files_written}")
        if result.media_downloaded:
            self.console.print(f"  [cyan]▣[/cyan] Media downloaded: {result.media_downloaded}")
        if result.deleted:
            self.console.print(f"  [red]-[/red] Deleted locally: {result.deleted}")
        for path in result.conflicts:
            self.console.print(f"  [red]⚡[/red] Conflict: {path}")

        self.print_failures(result.failures)

        if result.cancelled:
            self.console.print("\n[yellow]Pull cancelled; completed items were kept[/yellow]")
        elif result.conflicts:
            self.console.print("\n[red]Pull completed with conflicts[/red]")
        elif result.errors:
            self.console.print(f"\n[red]Pull completed with {result.errors} error(s)[/red]")
        elif result.files_written == 0 and result.deleted == 0:
            self.console.print("\n[green]Already up to date.[/green]")
        else:
            self.console.print("\n[green]Pull completed successfully[/green]")

    def print_failures(self, failures: List[ItemFailure]) -> None:
        if not failures:
            return
        self.console.print(f"\n[red]Failed items ({len(failures)}):[/red]")
        for failure in failures:
            self.console.print(f"  [red]✗[/red] {failure.path} ({failure.kind}): {failure.message}")

    def print_problems(self, problems: List[ValidationProblem]) -> None:
        """Display validation findings, errors first."""
        if not problems:
            self.console.print("[green]No validation problems found.[/green]")
            return

        table = Table(title="Validation problems", show_lines=False)
        table.add_column("Severity", style="bold")
        table.add_column("File")
        table.add_column("Problem")

        for problem in sorted(problems, key=lambda p: not p.is_error):
            label = "[red]error[/red]" if problem.is_error else "[yellow]warning[/yellow]"
            table.add_row(label, problem.path, f"{problem.field}: {problem.message}")

        self.console.print(table)
        errors = sum(1 for problem in problems if problem.is_error)
        self.console.print(f"\n{errors} error(s), {len(problems) - errors} warning(s)")
