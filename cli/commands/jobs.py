"""Jobs Commands - Enqueue and inspect background jobs"""

import asyncio
from datetime import timedelta

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from forum.config.settings import Settings
from forum.core.exceptions import EnqueueError, StoreConnectionError
from forum.jobs.definitions import (
    TOPIC_ACTIONS,
    JobPayload,
    ProcessTopicJob,
    PropagateUsernameJob,
    WelcomeEmailJob,
)
from forum.jobs.models import JobState, utcnow
from forum.jobs.schemas import JobRecordView
from forum.main import create_job_system

from ..utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Enqueue and inspect background jobs")


async def _enqueue(settings: Settings, job: JobPayload, delay_s: int) -> str:
    system = create_job_system(settings)
    try:
        run_at = utcnow() + timedelta(seconds=delay_s) if delay_s else None
        return await system.queue.enqueue(job, run_at=run_at)
    finally:
        await system.close()


def _submit(ctx: typer.Context, job: JobPayload, delay_s: int = 0) -> None:
    try:
        task_hash = asyncio.run(_enqueue(ctx.obj, job, delay_s))
    except EnqueueError as e:
        print_error(e.message)
        raise typer.Exit(1) from None

    print_success(f"Enqueued {job.job_name}")
    console.print(f"🔑 Task hash: [cyan]{task_hash}[/cyan]")
    console.print(f"💡 Check progress with [cyan]forum-jobs jobs status {task_hash}[/cyan]")


@app.command("enqueue-welcome-email")
def enqueue_welcome_email(
    ctx: typer.Context,
    user_id: int = typer.Option(..., "--user-id", help="Registered user ID"),
    username: str = typer.Option(..., "--username", help="Username to greet"),
    email: str = typer.Option(..., "--email", help="Recipient address"),
):
    """✉️ Enqueue a welcome email for a new user"""
    try:
        job = WelcomeEmailJob(user_id=user_id, username=username, email=email)
    except ValidationError as e:
        print_error(f"Invalid welcome email job: {e.errors()[0]['msg']}")
        raise typer.Exit(1) from None

    _submit(ctx, job)


@app.command("enqueue-process-topic")
def enqueue_process_topic(
    ctx: typer.Context,
    topic_id: int = typer.Option(..., "--topic-id", help="Topic to process"),
    action: str = typer.Option(
        ..., "--action", help=f"One of: {', '.join(TOPIC_ACTIONS)}"
    ),
    delay_s: int = typer.Option(0, "--delay-s", min=0, help="Delay before the job is due"),
):
    """🧵 Enqueue a topic maintenance action"""
    _submit(ctx, ProcessTopicJob(topic_id=topic_id, action=action), delay_s)


@app.command("enqueue-propagate-username")
def enqueue_propagate_username(
    ctx: typer.Context,
    user_id: int = typer.Option(..., "--user-id", help="Renamed user ID"),
    old_username: str = typer.Option(..., "--old-username", help="Previous username"),
    new_username: str = typer.Option(..., "--new-username", help="Current username"),
):
    """🪪 Enqueue propagation of a username change"""
    if old_username == new_username:
        print_error("Old and new username are the same; nothing to propagate")
        raise typer.Exit(1)

    try:
        job = PropagateUsernameJob(
            user_id=user_id, old_username=old_username, new_username=new_username
        )
    except ValidationError as e:
        print_error(f"Invalid username propagation job: {e.errors()[0]['msg']}")
        raise typer.Exit(1) from None

    _submit(ctx, job)


async def _lookup(settings: Settings, task_hash: str) -> list[JobRecordView]:
    system = create_job_system(settings)
    try:
        return await system.queue.lookup(task_hash)
    finally:
        await system.close()


@app.command("status")
def job_status(
    ctx: typer.Context,
    task_hash: str = typer.Argument(..., help="Task hash returned at enqueue time"),
):
    """🔍 Show the records created for a task hash"""
    try:
        records = asyncio.run(_lookup(ctx.obj, task_hash))
    except StoreConnectionError as e:
        print_error(f"Failed to look up jobs: {e.message}")
        raise typer.Exit(1) from None

    if not records:
        print_error(f"No jobs found for hash {task_hash}")
        raise typer.Exit(1)

    console.print(create_jobs_table(records, title=f"Jobs for {escape(task_hash[:12])}"))

    for record in records:
        if record.error:
            console.print(Panel(Text(record.error), title=f"Error · {str(record.id)[:8]}", border_style="red"))


async def _list(settings: Settings, state: JobState | None, limit: int) -> list[JobRecordView]:
    system = create_job_system(settings)
    try:
        records = await system.store.list_records(state=state, limit=limit)
        return [JobRecordView.model_validate(record) for record in records]
    finally:
        await system.close()


@app.command("list")
def list_jobs(
    ctx: typer.Context,
    state: JobState | None = typer.Option(None, "--state", "-s", help="Filter by state"),
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Number of jobs to show"),
):
    """📋 List recent jobs"""
    try:
        records = asyncio.run(_list(ctx.obj, state, limit))
    except StoreConnectionError as e:
        print_error(f"Failed to list jobs: {e.message}")
        raise typer.Exit(1) from None

    if not records:
        print_info(f"No jobs found (state: {state.value if state else 'any'})")
        return

    console.print(create_jobs_table(records))


async def _stats(settings: Settings):
    system = create_job_system(settings)
    try:
        return await system.store.stats(grace_ms=settings.job_sweep_grace_ms)
    finally:
        await system.close()


@app.command("stats")
def job_stats(ctx: typer.Context):
    """📊 Show queue statistics"""
    try:
        stats = asyncio.run(_stats(ctx.obj))
    except StoreConnectionError as e:
        print_error(f"Failed to read stats: {e.message}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))
