"""Forum Jobs CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel
from sqlalchemy.engine import make_url

from forum.config.logging import setup_logging
from forum.config.settings import Settings

# Import command modules
from .commands import db, jobs, worker

console = Console()

# Create main Typer app
app = typer.Typer(
    name="forum-jobs",
    help="🧵 Forum background jobs - queue, workers and inspection",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(db.app, name="db")
app.add_typer(worker.app, name="worker")
app.add_typer(jobs.app, name="jobs")


@app.callback()
def main(
    ctx: typer.Context,
    database_url: str | None = typer.Option(
        None, "--database-url", help="Override DATABASE_URL for this command"
    ),
):
    """Load settings once and share them with every subcommand."""
    overrides = {"database_url": database_url} if database_url else {}
    settings = Settings(**overrides)
    setup_logging(settings)
    ctx.obj = settings


@app.command()
def config(ctx: typer.Context):
    """⚙️ Show the effective job settings"""
    settings: Settings = ctx.obj

    console.print(Panel(
        f"• Environment: [yellow]{settings.environment}[/yellow]\n"
        f"• Database: [blue]{make_url(settings.database_url).render_as_string(hide_password=True)}[/blue]\n"
        f"• Workers: [cyan]{settings.job_worker_count}[/cyan] "
        f"every [cyan]{settings.job_poll_interval_ms}ms[/cyan]\n"
        f"• Timeout: [cyan]{settings.job_default_timeout_ms}ms[/cyan], "
        f"max retries [cyan]{settings.job_default_max_retries}[/cyan]\n"
        f"• Automatic retry: [{'green' if settings.job_retry_enabled else 'red'}]"
        f"{'on' if settings.job_retry_enabled else 'off'}[/]\n"
        f"• Sweep: every [cyan]{settings.job_sweep_interval_s}s[/cyan]",
        title="Job Settings",
        border_style="blue",
    ))


if __name__ == "__main__":
    app()
