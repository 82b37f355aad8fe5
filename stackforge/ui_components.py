"""
Stackforge - UI Components
Standardized headers and tables
"""

from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table
from rich import box

from stackforge.models.preview import OperationKind, PreviewResult
from stackforge.models.run import RunReport, StackStatus

BRAND = "stackforge"

# Color scheme
BRAND_COLOR = "cyan"
SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"

STATUS_COLORS = {
    StackStatus.SUCCEEDED: SUCCESS_COLOR,
    StackStatus.FAILED: ERROR_COLOR,
    StackStatus.CANCELLED: WARNING_COLOR,
    StackStatus.SKIPPED: "dim",
    StackStatus.PENDING: "dim",
    StackStatus.RUNNING: BRAND_COLOR,
}


def show_header(
    title: str,
    subtitle: str = None,
    profile: str = None,
    details: dict = None,
    console: Console = None,
):
    """
    Display a standardized command header.

    Args:
        title: Main title (e.g., "Provision Stacks")
        subtitle: Optional subtitle line
        profile: Profile name (if applicable)
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)
    """
    if console is None:
        console = Console()

    prefix = f" [bold color(214)]{BRAND}[/bold color(214)] [dim]›[/dim]"
    console.print(f"{prefix} [bold white]{title}[/bold white]")
    if subtitle:
        console.print(f"{prefix} [dim]{subtitle}[/dim]")
    if profile:
        console.print(f"{prefix} Profile: [cyan]{profile}[/cyan]")
    if details:
        for key, value in details.items():
            console.print(f"{prefix} {key}: [cyan]{value}[/cyan]")

    console.print()


def preview_table(results: Sequence[PreviewResult]) -> Table:
    """Per-stack change counts."""
    table = Table(box=box.SIMPLE, show_edge=False, header_style="bold")
    table.add_column("Stack", style="cyan")
    table.add_column("Create", justify="right", style=SUCCESS_COLOR)
    table.add_column("Update", justify="right", style=WARNING_COLOR)
    table.add_column("Delete", justify="right", style=ERROR_COLOR)
    table.add_column("Unchanged", justify="right", style="dim")
    table.add_column("Summary")

    for result in results:
        table.add_row(
            result.stack_name,
            str(result.count(OperationKind.CREATE)),
            str(result.count(OperationKind.UPDATE)),
            str(result.count(OperationKind.DELETE)),
            str(result.count(OperationKind.NO_OP)),
            result.summary,
        )
    return table


def report_table(report: RunReport) -> Table:
    """Per-stack outcome of a run."""
    table = Table(box=box.SIMPLE, show_edge=False, header_style="bold")
    table.add_column("Stack", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right", style="dim")
    table.add_column("Details", overflow="fold")

    for outcome in report.outcomes:
        color = STATUS_COLORS.get(outcome.status, "white")
        duration = outcome.duration_seconds
        table.add_row(
            outcome.name,
            f"[{color}]{outcome.status.value}[/{color}]",
            f"{duration:.1f}s" if duration is not None else "-",
            outcome.error or outcome.reason or "",
        )
    return table


def print_previews(results: Sequence[PreviewResult], console: Optional[Console] = None):
    console = console or Console()
    if not results:
        console.print("[dim]No stacks selected[/dim]")
        return
    console.print(preview_table(results))


def print_report(report: RunReport, console: Optional[Console] = None):
    console = console or Console()
    console.print(report_table(report))
