"""
Job record model for background processing.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, Text, TypeDecorator, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from forum.infra.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite drops the offset on the way in, so values are normalized to UTC
    before binding and tagged as UTC again when read back.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted by the job store")
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class JobState(str, Enum):
    """Derived job state; not stored, computed from the timestamps."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobRecord(Base):
    """
    Persisted unit of background work.

    State lives in the nullable timestamps:
    - pending: running_at and done_at are null and scheduled_at has passed
    - running: running_at is set, done_at is null
    - terminal: done_at is set, never claimed again
    """

    __tablename__ = "background_tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    task_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job kind name"
    )
    task_hash: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Content hash of the serialized payload"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Serialized job arguments",
    )

    # Policy
    timeout_msecs: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Execution timeout in milliseconds"
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Retry budget"
    )
    retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Retries consumed"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Earliest time to run job"
    )
    running_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When a worker claimed the job"
    )
    done_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When the job reached a terminal state"
    )

    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Failure detail"
    )

    __table_args__ = (
        Index(
            "ix_background_tasks_pending",
            "scheduled_at",
            postgresql_where=text("done_at IS NULL AND running_at IS NULL"),
        ),
        Index("ix_background_tasks_task_hash", "task_hash"),
    )

    def is_pending(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (
            self.done_at is None
            and self.running_at is None
            and self.scheduled_at <= now
        )

    def is_running(self) -> bool:
        return self.running_at is not None and self.done_at is None

    def is_terminal(self) -> bool:
        return self.done_at is not None

    def deadline(self) -> datetime | None:
        """When a running job exceeds its timeout."""
        if not self.is_running():
            return None
        return self.running_at + timedelta(milliseconds=self.timeout_msecs)

    def is_stale(self, now: datetime | None = None, grace_ms: int = 0) -> bool:
        """Check if a running job has outlived its timeout."""
        deadline = self.deadline()
        if deadline is None:
            return False
        return deadline + timedelta(milliseconds=grace_ms) < (now or utcnow())

    def can_retry(self) -> bool:
        return self.retries < self.max_retries

    def state_at(self, now: datetime) -> JobState:
        if self.done_at is not None:
            return JobState.FAILED if self.error else JobState.SUCCEEDED
        if self.running_at is not None:
            return JobState.RUNNING
        if self.scheduled_at > now:
            return JobState.SCHEDULED
        return JobState.PENDING

    @property
    def state(self) -> str:
        return self.state_at(utcnow()).value
