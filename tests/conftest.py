import os
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from sqlalchemy import text

from forum.config.settings import Settings
from forum.core.registries import JobKind, JobRegistry
from forum.infra.database import Database
from forum.jobs.definitions import ProcessTopicJob, WelcomeEmailJob
from forum.jobs.handlers import ProcessTopicHandler, WelcomeEmailHandler
from forum.jobs.models import JobRecord, utcnow
from forum.jobs.queue import JobQueue
from forum.jobs.registry_init import build_job_registry
from forum.jobs.store import JobStore
from forum.jobs.worker import WorkerPool


def make_settings(database_url: str, **overrides) -> Settings:
    """Settings tuned for fast test runs."""
    values = {
        "database_url": database_url,
        "debug": False,
        "job_worker_count": 2,
        "job_poll_interval_ms": 10,
        "job_default_timeout_ms": 2000,
        "job_default_max_retries": 3,
        "job_sweep_interval_s": 3600,
        "job_sweep_grace_ms": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def settings(sqlite_url) -> Settings:
    return make_settings(sqlite_url)


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """A fresh file-backed SQLite database with the jobs table."""
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def store(database) -> JobStore:
    return JobStore(database)


@pytest.fixture
def registry(settings) -> JobRegistry:
    return build_job_registry(settings)


@pytest.fixture
def queue(store, registry, settings) -> JobQueue:
    return JobQueue(store, registry, settings)


@pytest.fixture
def pool(store, registry, settings) -> WorkerPool:
    return WorkerPool(store, registry, settings)


@pytest.fixture
def welcome_job() -> WelcomeEmailJob:
    return WelcomeEmailJob(user_id=42, username="alice", email="alice@example.com")


@pytest.fixture
def open_registry(settings) -> JobRegistry:
    """An unfrozen registry with the standard kinds, for tests that add their own."""
    registry = JobRegistry()
    registry.register_kind(
        JobKind("welcome_email", WelcomeEmailJob, WelcomeEmailHandler(settings))
    )
    registry.register_kind(
        JobKind("process_topic", ProcessTopicJob, ProcessTopicHandler(settings))
    )
    return registry


async def insert_record(
    store: JobStore,
    task_name: str = "process_topic",
    payload: dict | None = None,
    *,
    delay: timedelta = timedelta(0),
    timeout_msecs: int = 2000,
    max_retries: int = 3,
) -> JobRecord:
    """Insert a record directly, bypassing the queue and the registry."""
    now = utcnow()
    return await store.insert(
        task_name=task_name,
        task_hash="manual",
        payload=payload if payload is not None else {"topic_id": 1, "action": "index"},
        timeout_msecs=timeout_msecs,
        max_retries=max_retries,
        scheduled_at=now + delay,
        now=now,
    )


@pytest.fixture
def seed(store):
    """Insert records straight into the store: ``await seed(task_name, payload, delay=...)``."""

    async def _seed(*args, **kwargs) -> JobRecord:
        return await insert_record(store, *args, **kwargs)

    return _seed


@pytest.fixture
async def pg_database() -> AsyncGenerator[Database, None]:
    """PostgreSQL database from DATABASE_URL, for FOR UPDATE SKIP LOCKED tests."""
    database_url = os.getenv("DATABASE_URL")

    if not database_url or "postgresql" not in database_url:
        # Skip database tests if no PostgreSQL available
        pytest.skip("No PostgreSQL database available for testing")

    database = Database(make_settings(database_url, db_pool_size=20))
    await database.create_all()
    async with database.engine.begin() as conn:
        await conn.execute(text("DELETE FROM background_tasks"))

    yield database

    async with database.engine.begin() as conn:
        await conn.execute(text("DELETE FROM background_tasks"))
    await database.close()
