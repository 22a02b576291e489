"""
Polling worker pool that drains the job store.
"""

import asyncio
import random
from datetime import datetime, timedelta

from forum.config.logging import bind_worker_context, get_logger
from forum.config.settings import Settings
from forum.core.exceptions import ExecutionError
from forum.core.registries import JobRegistry
from forum.jobs.models import JobRecord, utcnow
from forum.jobs.schemas import JobOutcome
from forum.jobs.store import JobStore

logger = get_logger(__name__)

TIMEOUT_ERROR_CODE = "TIMEOUT"

# Unknown kinds and bad payloads fail the same way every time
RETRYABLE_ERROR_CODES = frozenset({ExecutionError.error_code, TIMEOUT_ERROR_CODE})


class WorkerPool:
    """
    N independent polling loops sharing one job store.

    Features:
    - Each loop sleeps, claims at most one record, runs it, records the outcome
    - Per-record timeout enforced around the job routine
    - Optional bounded retry with exponential backoff and jitter
    - Periodic sweep of records left running past their timeout
    - A failed iteration is logged and never ends its loop
    """

    def __init__(self, store: JobStore, registry: JobRegistry, settings: Settings):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.running = False
        self._stop_event = asyncio.Event()

    async def run(self, worker_count: int | None = None) -> None:
        """Run worker loops and the sweeper until stop() is called."""
        if self.running:
            raise RuntimeError("Worker pool is already running")

        if worker_count is None:
            worker_count = self.settings.job_worker_count
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting job worker pool",
            worker_count=worker_count,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            retry_enabled=self.settings.job_retry_enabled,
        )

        try:
            await asyncio.gather(
                *(self._worker_loop(worker_id) for worker_id in range(worker_count)),
                self._sweep_loop(),
            )
        finally:
            self.running = False
            logger.info("Job worker pool stopped")

    def stop(self) -> None:
        """Ask every loop to exit after its current iteration."""
        logger.info("Stopping job worker pool")
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _worker_loop(self, worker_id: int) -> None:
        bind_worker_context(worker_id)
        logger.info("Worker started")

        poll_interval = self.settings.job_poll_interval_ms / 1000
        while not self._stop_event.is_set():
            if await self._sleep(poll_interval):
                break

            try:
                await self.claim_and_execute(worker_id)
            except Exception:
                logger.exception("Error in worker loop")

        logger.info("Worker stopped")

    async def claim_and_execute(self, worker_id: int = 0) -> bool:
        """
        Run one claim cycle.

        Returns True if a record was claimed and its outcome recorded.
        """
        record = await self.store.claim_one(utcnow())
        if record is None:
            return False

        job_logger = logger.bind(
            worker_id=worker_id, job_id=str(record.id), task_name=record.task_name
        )
        job_logger.info("Processing job started")

        outcome = await self._execute(record)

        if outcome.succeeded:
            await self.store.complete(record.id, outcome, claimed_at=record.running_at)
            job_logger.info("Processing job completed successfully", result=outcome.result)
        elif self._should_retry(record, outcome):
            next_run_at = self._calculate_retry_time(record.retries + 1)
            await self.store.release_for_retry(
                record.id, outcome.error, next_run_at, claimed_at=record.running_at
            )
            job_logger.warning(
                "Job failed, retry scheduled",
                error=outcome.error,
                error_code=outcome.error_code,
                retries=record.retries + 1,
                next_run_at=next_run_at.isoformat(),
            )
        else:
            await self.store.complete(record.id, outcome, claimed_at=record.running_at)
            job_logger.error(
                "Job failed", error=outcome.error, error_code=outcome.error_code
            )

        return True

    async def _execute(self, record: JobRecord) -> JobOutcome:
        try:
            return await asyncio.wait_for(
                self.registry.dispatch(record.task_name, record.payload),
                timeout=record.timeout_msecs / 1000,
            )
        except TimeoutError:
            return JobOutcome.failure(
                f"Job timed out after {record.timeout_msecs}ms", TIMEOUT_ERROR_CODE
            )

    def _should_retry(self, record: JobRecord, outcome: JobOutcome) -> bool:
        return (
            self.settings.job_retry_enabled
            and outcome.error_code in RETRYABLE_ERROR_CODES
            and record.can_retry()
        )

    def _calculate_retry_time(self, attempt: int) -> datetime:
        """Calculate next retry time with exponential backoff and jitter."""
        base_delay = self.settings.job_backoff_base_ms / 1000
        max_delay = self.settings.job_max_backoff_s

        # Exponential backoff: base * 2^(attempt - 1)
        delay = min(max_delay, base_delay * (2 ** (attempt - 1)))

        # Add jitter (±25% random variation)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        final_delay = max(0.0, delay + jitter)

        return utcnow() + timedelta(seconds=final_delay)

    async def _sweep_loop(self) -> None:
        """Recover records left running by crashed or stalled workers."""
        while not self._stop_event.is_set():
            if await self._sleep(self.settings.job_sweep_interval_s):
                break

            try:
                await self.store.sweep_stale(
                    utcnow(), grace_ms=self.settings.job_sweep_grace_ms
                )
            except Exception:
                logger.exception("Error in stale job sweep")
