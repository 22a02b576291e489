"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobOutcome(BaseModel):
    """Result of one execution attempt."""

    model_config = ConfigDict(frozen=True)

    succeeded: bool
    error: str | None = None
    error_code: str | None = None
    result: dict[str, Any] | None = None

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> "JobOutcome":
        return cls(succeeded=True, result=result)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> "JobOutcome":
        return cls(succeeded=False, error=error, error_code=error_code)


class JobRecordView(BaseModel):
    """Read-only view of a persisted job record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    task_name: str
    task_hash: str
    payload: dict[str, Any]
    state: str
    timeout_msecs: int
    max_retries: int
    retries: int
    created_at: datetime
    scheduled_at: datetime
    running_at: datetime | None = None
    done_at: datetime | None = None
    error: str | None = None


class QueueStats(BaseModel):
    """Counts of job records per derived state."""

    total: int = 0
    scheduled: int = 0
    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    stale: int = Field(default=0, description="Running past timeout, awaiting sweep")
    by_task: dict[str, int] = Field(default_factory=dict)


class SweepResult(BaseModel):
    """Records touched by one stale-record sweep."""

    released: list[UUID] = Field(default_factory=list)
    expired: list[UUID] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.released) + len(self.expired)
