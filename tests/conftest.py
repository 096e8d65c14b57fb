from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plugin_jobs.config.settings import Settings
from plugin_jobs.infra.database import Database
from plugin_jobs.jobs.locking import JobLockManager
from plugin_jobs.jobs.models import JobStatus, PluginJob
from plugin_jobs.jobs.queue import PluginJobQueue, create_job_queue
from plugin_jobs.jobs.registry import JobHandlerRegistry
from plugin_jobs.jobs.service import JobService
from plugin_jobs.jobs.worker import JobWorker
from plugin_jobs.main import create_app

CRON_SECRET = "test-cron-secret"


def naive_utc(value: datetime | None = None) -> datetime:
    """SQLite hands back naive UTC datetimes; compare against the same."""
    return (value or datetime.now(UTC)).astimezone(UTC).replace(tzinfo=None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        environment="test",
        debug=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'plugin_jobs.db'}",
        cron_secret=CRON_SECRET,
        job_poller_enabled=False,
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """Create the schema in a fresh database for each test."""
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def session_factory(database: Database) -> async_sessionmaker[AsyncSession]:
    return database.SessionLocal


@pytest.fixture
def queue(session_factory, settings) -> PluginJobQueue:
    return create_job_queue(session_factory, "plugin-1", "Test Plugin", settings)


@pytest.fixture
def other_queue(session_factory, settings) -> PluginJobQueue:
    return create_job_queue(session_factory, "plugin-2", "Other Plugin", settings)


@pytest.fixture
def service(settings) -> JobService:
    return JobService(settings)


@pytest.fixture
def lock_manager(settings) -> JobLockManager:
    return JobLockManager(settings)


@pytest.fixture
def registry() -> JobHandlerRegistry:
    return JobHandlerRegistry()


@pytest.fixture
def worker(session_factory, registry, settings) -> JobWorker:
    return JobWorker(session_factory, registry, settings)


@pytest.fixture
def insert_job(session_factory):
    """Insert a job row directly, in any state."""

    async def _insert(**overrides: Any) -> PluginJob:
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "id": uuid4(),
            "plugin_id": "plugin-1",
            "type": "test-job",
            "payload": {},
            "status": JobStatus.PENDING.value,
            "priority": 100,
            "run_at": now,
            "attempts": 0,
            "max_attempts": 3,
            "lock_timeout": 300,
            "created_at": now,
        }
        values.update(overrides)

        job = PluginJob(**values)
        async with session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    return _insert


@pytest.fixture
def fetch_job(session_factory):
    """Load the current state of a job row."""

    async def _fetch(job_id: UUID) -> PluginJob | None:
        async with session_factory() as session:
            return await session.get(PluginJob, job_id)

    return _fetch


@pytest.fixture
def app(settings, database):
    """Create a test application bound to the test database."""
    app = create_app(settings, database)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"X-Cron-Secret": CRON_SECRET}
