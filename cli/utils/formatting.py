"""Rich Formatting Utilities for CLI Output"""

from datetime import datetime

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from forum.jobs.schemas import JobRecordView, QueueStats, SweepResult

console = Console()

STATE_STYLES = {
    "scheduled": "blue",
    "pending": "yellow",
    "running": "cyan",
    "succeeded": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {escape(message)}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {escape(message)}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {escape(message)}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {escape(message)}[/blue]")


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "—"


def create_jobs_table(records: list[JobRecordView], title: str = "Jobs") -> Table:
    """Create a formatted table of job records"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Task", justify="left", style="magenta")
    table.add_column("State", justify="center")
    table.add_column("Scheduled", justify="center", style="yellow")
    table.add_column("Done", justify="center")
    table.add_column("Retries", justify="right")
    table.add_column("Error", justify="left", style="red")

    for record in records:
        style = STATE_STYLES.get(record.state, "white")
        error = record.error or "—"
        if len(error) > 60:
            error = error[:60] + "..."
        table.add_row(
            str(record.id)[:8],  # Short ID
            Text(record.task_name),
            f"[{style}]{record.state}[/{style}]",
            _format_time(record.scheduled_at),
            _format_time(record.done_at),
            f"{record.retries}/{record.max_retries}",
            Text(error),
        )

    return table


def create_stats_panel(stats: QueueStats) -> Panel:
    """Create formatted panel for queue statistics"""
    by_task = "\n".join(
        f"  • {escape(name)}: [cyan]{count}[/cyan]" for name, count in sorted(stats.by_task.items())
    )
    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total: [bold]{stats.total}[/bold]
• Scheduled: [blue]{stats.scheduled}[/blue]
• Pending: [yellow]{stats.pending}[/yellow]
• Running: [cyan]{stats.running}[/cyan] ([red]{stats.stale} stale[/red])
• Succeeded: [green]{stats.succeeded}[/green]
• Failed: [red]{stats.failed}[/red]

By task:
{by_task or "  —"}
"""

    return Panel(content.strip(), title="Job Queue", border_style="green")


def print_sweep_result(result: SweepResult):
    """Summarize a stale-record sweep"""
    if not result.total:
        print_info("No stale jobs found")
        return

    print_warning(
        f"Recovered {result.total} stale job(s): "
        f"{len(result.released)} re-queued, {len(result.expired)} expired"
    )
