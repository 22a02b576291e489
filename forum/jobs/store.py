"""
Durable job store and the claim protocol.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config.logging import get_logger
from forum.core.exceptions import StoreConnectionError
from forum.infra.database import Database
from forum.jobs.models import JobRecord, JobState, utcnow
from forum.jobs.schemas import JobOutcome, QueueStats, SweepResult

logger = get_logger(__name__)


def _pending(now: datetime):
    return and_(
        JobRecord.done_at.is_(None),
        JobRecord.running_at.is_(None),
        JobRecord.scheduled_at <= now,
    )


def _running():
    return and_(JobRecord.running_at.is_not(None), JobRecord.done_at.is_(None))


def _state_filter(state: JobState, now: datetime):
    if state is JobState.SCHEDULED:
        return and_(
            JobRecord.done_at.is_(None),
            JobRecord.running_at.is_(None),
            JobRecord.scheduled_at > now,
        )
    if state is JobState.PENDING:
        return _pending(now)
    if state is JobState.RUNNING:
        return _running()
    if state is JobState.SUCCEEDED:
        return and_(JobRecord.done_at.is_not(None), JobRecord.error.is_(None))
    return and_(JobRecord.done_at.is_not(None), JobRecord.error.is_not(None))


class JobStore:
    """
    Table-backed job queue shared by every producer and worker.

    Mutual exclusion between claimants comes from the database alone:
    - PostgreSQL: SELECT ... FOR UPDATE SKIP LOCKED and the running_at
      update commit in one transaction, so concurrent claimants skip rows
      that are mid-claim instead of waiting on them
    - other backends: a conditional UPDATE per candidate that only matches
      while running_at is still null; a claimant owns the row only if its
      update changed it
    """

    def __init__(self, database: Database, claim_batch_size: int = 10):
        self.database = database
        self.claim_batch_size = claim_batch_size

    @property
    def supports_skip_locked(self) -> bool:
        return self.database.dialect == "postgresql"

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.database.session() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreConnectionError(
                f"Job store unavailable: {e}", details={"error": str(e)}
            ) from e

    async def insert(
        self,
        *,
        task_name: str,
        task_hash: str,
        payload: dict[str, Any],
        timeout_msecs: int,
        max_retries: int,
        scheduled_at: datetime,
        now: datetime | None = None,
    ) -> JobRecord:
        """Insert a new pending record."""
        record = JobRecord(
            id=uuid4(),
            task_name=task_name,
            task_hash=task_hash,
            payload=payload,
            timeout_msecs=timeout_msecs,
            max_retries=max_retries,
            retries=0,
            created_at=now or utcnow(),
            scheduled_at=scheduled_at,
        )

        async with self._transaction() as session:
            session.add(record)

        return record

    async def claim_one(self, now: datetime | None = None) -> JobRecord | None:
        """
        Atomically move the oldest due record from pending to running.

        Returns None when nothing is due.
        """
        now = now or utcnow()

        if self.supports_skip_locked:
            record = await self._claim_skip_locked(now)
        else:
            record = await self._claim_conditional(now)

        if record is not None:
            logger.debug(
                "Claimed job",
                job_id=str(record.id),
                task_name=record.task_name,
                scheduled_at=record.scheduled_at.isoformat(),
            )

        return record

    async def _claim_skip_locked(self, now: datetime) -> JobRecord | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(JobRecord)
                .where(_pending(now))
                .order_by(JobRecord.scheduled_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None

            record.running_at = now

        return record

    async def _claim_conditional(self, now: datetime) -> JobRecord | None:
        # Each lost race means another claimant took a row, so this terminates
        while True:
            async with self._transaction() as session:
                result = await session.execute(
                    select(JobRecord.id)
                    .where(_pending(now))
                    .order_by(JobRecord.scheduled_at)
                    .limit(self.claim_batch_size)
                )
                candidate_ids = result.scalars().all()
                if not candidate_ids:
                    return None

                for candidate_id in candidate_ids:
                    result = await session.execute(
                        update(JobRecord)
                        .where(JobRecord.id == candidate_id, _pending(now))
                        .values(running_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        return await session.get(JobRecord, candidate_id)

    async def complete(
        self,
        record_id: UUID,
        outcome: JobOutcome,
        *,
        claimed_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Mark a running record terminal.

        A record that is already terminal (or, with claimed_at, was
        re-claimed since) is left untouched and False is returned.
        """
        conditions = [JobRecord.id == record_id, _running()]
        if claimed_at is not None:
            conditions.append(JobRecord.running_at == claimed_at)

        values = {
            "done_at": now or utcnow(),
            "error": None if outcome.succeeded else (outcome.error or "Job failed"),
        }

        async with self._transaction() as session:
            result = await session.execute(
                update(JobRecord)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount > 0

        if not applied:
            logger.debug("Completion skipped for terminal job", job_id=str(record_id))

        return applied

    async def release_for_retry(
        self,
        record_id: UUID,
        error: str,
        run_at: datetime,
        *,
        claimed_at: datetime | None = None,
    ) -> bool:
        """Return a running record to pending, consuming one retry."""
        conditions = [JobRecord.id == record_id, _running()]
        if claimed_at is not None:
            conditions.append(JobRecord.running_at == claimed_at)

        async with self._transaction() as session:
            result = await session.execute(
                update(JobRecord)
                .where(*conditions)
                .values(
                    running_at=None,
                    retries=JobRecord.retries + 1,
                    scheduled_at=run_at,
                    error=error,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    async def sweep_stale(
        self, now: datetime | None = None, grace_ms: int = 0
    ) -> SweepResult:
        """
        Recover running records whose timeout has passed.

        Records with retries left go back to pending; the rest are completed
        with a timeout error.
        """
        now = now or utcnow()
        sweep = SweepResult()

        async with self._transaction() as session:
            result = await session.execute(select(JobRecord).where(_running()))
            stale = [r for r in result.scalars().all() if r.is_stale(now, grace_ms)]

            for record in stale:
                message = f"Job timed out after {record.timeout_msecs}ms"
                statement = update(JobRecord).where(
                    JobRecord.id == record.id,
                    JobRecord.running_at == record.running_at,
                    JobRecord.done_at.is_(None),
                )

                if record.can_retry():
                    statement = statement.values(
                        running_at=None,
                        retries=JobRecord.retries + 1,
                        scheduled_at=now,
                        error=message,
                    )
                    target = sweep.released
                else:
                    statement = statement.values(done_at=now, error=message)
                    target = sweep.expired

                result = await session.execute(
                    statement.execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    target.append(record.id)

        if sweep.total:
            logger.warning(
                "Recovered stale jobs",
                released=len(sweep.released),
                expired=len(sweep.expired),
            )

        return sweep

    async def get(self, record_id: UUID) -> JobRecord | None:
        async with self._transaction() as session:
            return await session.get(JobRecord, record_id)

    async def find_by_hash(self, task_hash: str) -> list[JobRecord]:
        """All records enqueued with the given content hash, oldest first."""
        async with self._transaction() as session:
            result = await session.execute(
                select(JobRecord)
                .where(JobRecord.task_hash == task_hash)
                .order_by(JobRecord.created_at, JobRecord.id)
            )
            return list(result.scalars().all())

    async def list_records(
        self,
        state: JobState | None = None,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[JobRecord]:
        """Most recently created records, optionally filtered by state."""
        query = select(JobRecord)
        if state is not None:
            query = query.where(_state_filter(state, now or utcnow()))

        query = query.order_by(JobRecord.created_at.desc()).limit(limit)

        async with self._transaction() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def stats(self, now: datetime | None = None, grace_ms: int = 0) -> QueueStats:
        """Count records per derived state and per task name."""
        now = now or utcnow()
        state = case(
            (
                and_(JobRecord.done_at.is_not(None), JobRecord.error.is_not(None)),
                JobState.FAILED.value,
            ),
            (JobRecord.done_at.is_not(None), JobState.SUCCEEDED.value),
            (JobRecord.running_at.is_not(None), JobState.RUNNING.value),
            (JobRecord.scheduled_at > now, JobState.SCHEDULED.value),
            else_=JobState.PENDING.value,
        ).label("state")

        async with self._transaction() as session:
            state_result = await session.execute(
                select(state, func.count(JobRecord.id)).group_by("state")
            )
            by_state = dict(state_result.all())

            task_result = await session.execute(
                select(JobRecord.task_name, func.count(JobRecord.id)).group_by(
                    JobRecord.task_name
                )
            )
            by_task = dict(task_result.all())

            running_result = await session.execute(select(JobRecord).where(_running()))
            stale = sum(
                1 for r in running_result.scalars().all() if r.is_stale(now, grace_ms)
            )

        return QueueStats(
            total=sum(by_state.values()),
            scheduled=by_state.get(JobState.SCHEDULED.value, 0),
            pending=by_state.get(JobState.PENDING.value, 0),
            running=by_state.get(JobState.RUNNING.value, 0),
            succeeded=by_state.get(JobState.SUCCEEDED.value, 0),
            failed=by_state.get(JobState.FAILED.value, 0),
            stale=stale,
            by_task=by_task,
        )
