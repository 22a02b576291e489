from dataclasses import dataclass

from forum.config.settings import Settings, get_settings
from forum.core.registries import JobRegistry
from forum.infra.database import Database
from forum.jobs.queue import JobQueue
from forum.jobs.registry_init import build_job_registry
from forum.jobs.store import JobStore
from forum.jobs.worker import WorkerPool


@dataclass
class JobSystem:
    """Wired components of the background job subsystem."""

    settings: Settings
    database: Database
    store: JobStore
    registry: JobRegistry
    queue: JobQueue
    pool: WorkerPool

    async def close(self) -> None:
        await self.database.close()


def create_job_system(settings: Settings | None = None) -> JobSystem:
    """Build the store, registry, queue and worker pool around one database."""
    settings = settings or get_settings()

    database = Database(settings)
    store = JobStore(database)
    registry = build_job_registry(settings)

    return JobSystem(
        settings=settings,
        database=database,
        store=store,
        registry=registry,
        queue=JobQueue(store, registry, settings),
        pool=WorkerPool(store, registry, settings),
    )
