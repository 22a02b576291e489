"""
Job queue for enqueueing background jobs.
"""

import hashlib
import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from forum.config.logging import get_logger
from forum.config.settings import Settings
from forum.core.exceptions import (
    EnqueueFailed,
    SerializationError,
    SerializationFailed,
    StoreConnectionError,
)
from forum.core.registries import JobRegistry
from forum.jobs.models import utcnow
from forum.jobs.schemas import JobRecordView
from forum.jobs.store import JobStore

logger = get_logger(__name__)


def content_hash(payload: dict[str, Any]) -> str:
    """
    Traceability hash for a serialized payload.

    Computed over canonical JSON so equal payloads hash equally regardless
    of key order. Not a uniqueness key: identical payloads still enqueue
    independent records.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.md5(canonical.encode()).hexdigest()


class JobQueue:
    """Producer side of the job subsystem."""

    def __init__(self, store: JobStore, registry: JobRegistry, settings: Settings):
        self.store = store
        self.registry = registry
        self.settings = settings

    async def enqueue(self, job: BaseModel, *, run_at: datetime | None = None) -> str:
        """
        Persist a job for background execution.

        Args:
            job: A registered job payload instance
            run_at: Earliest execution time, defaults to now

        Returns:
            The content hash of the serialized payload, usable with lookup()

        Raises:
            SerializationFailed: The job could not be serialized
            EnqueueFailed: The store rejected or could not take the insert
        """
        try:
            task_name, payload = self.registry.serialize(job)
        except SerializationError as e:
            raise SerializationFailed(e.message, details=e.details) from e

        task_hash = content_hash(payload)
        now = utcnow()

        try:
            record = await self.store.insert(
                task_name=task_name,
                task_hash=task_hash,
                payload=payload,
                timeout_msecs=self.settings.job_default_timeout_ms,
                max_retries=self.settings.job_default_max_retries,
                scheduled_at=run_at or now,
                now=now,
            )
        except StoreConnectionError as e:
            logger.error("Failed to enqueue job", task_name=task_name, error=e.message)
            raise EnqueueFailed(
                f"Failed to enqueue job: {e.message}", details={"task_name": task_name}
            ) from e
        except SQLAlchemyError as e:
            logger.exception("Job insert rejected", task_name=task_name)
            raise EnqueueFailed(
                f"Failed to enqueue job: {e}", details={"task_name": task_name}
            ) from e

        logger.info(
            "Enqueued job",
            job_id=str(record.id),
            task_name=task_name,
            task_hash=task_hash,
            scheduled_at=record.scheduled_at.isoformat(),
        )

        return task_hash

    async def lookup(self, task_hash: str) -> list[JobRecordView]:
        """Inspect the records created under a content hash."""
        records = await self.store.find_by_hash(task_hash)
        return [JobRecordView.model_validate(record) for record in records]
