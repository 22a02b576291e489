"""Worker Commands - Run the worker pool and maintenance sweeps"""

import asyncio
import signal

import typer

from forum.config.settings import Settings
from forum.core.exceptions import StoreConnectionError
from forum.jobs.models import utcnow
from forum.jobs.schemas import SweepResult
from forum.main import create_job_system

from ..utils.formatting import print_error, print_info, print_success, print_sweep_result

app = typer.Typer(name="worker", help="Background worker commands")


async def _run_pool(settings: Settings, workers: int | None) -> None:
    system = create_job_system(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, system.pool.stop)

    try:
        await system.pool.run(workers)
    finally:
        await system.close()


@app.command("run")
def run_workers(
    ctx: typer.Context,
    workers: int | None = typer.Option(
        None, "--workers", "-w", min=1, help="Number of polling workers"
    ),
):
    """🚀 Run the worker pool until interrupted"""
    settings: Settings = ctx.obj
    print_info(
        f"Starting {workers or settings.job_worker_count} worker(s), "
        f"polling every {settings.job_poll_interval_ms}ms"
    )

    asyncio.run(_run_pool(settings, workers))
    print_success("Worker pool stopped")


async def _sweep(settings: Settings) -> SweepResult:
    system = create_job_system(settings)
    try:
        return await system.store.sweep_stale(
            utcnow(), grace_ms=settings.job_sweep_grace_ms
        )
    finally:
        await system.close()


@app.command("sweep")
def sweep(ctx: typer.Context):
    """🧹 Recover jobs left running past their timeout"""
    try:
        result = asyncio.run(_sweep(ctx.obj))
    except StoreConnectionError as e:
        print_error(f"Sweep failed: {e.message}")
        raise typer.Exit(1) from None

    print_sweep_result(result)
