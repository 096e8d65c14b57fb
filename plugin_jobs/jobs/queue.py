"""
Per-plugin job queue facade.

A plugin only ever sees its own jobs through this object; every query is
scoped by ``plugin_id``.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings, get_settings
from plugin_jobs.jobs.models import JobStatus, PluginJob
from plugin_jobs.jobs.schemas import EnqueueJobOptions, JobInfo

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Job cancelled by plugin"


class PluginJobQueue:
    """Job queue bound to a single plugin."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        plugin_id: str,
        plugin_name: str,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.plugin_id = plugin_id
        self.plugin_name = plugin_name
        self.settings = settings

    async def enqueue(self, options: EnqueueJobOptions) -> UUID:
        """
        Add a job for this plugin.

        Unset options fall back to the configured defaults and ``run_at``
        defaults to now.

        Returns:
            The new job id
        """
        job = PluginJob(
            id=uuid4(),
            plugin_id=self.plugin_id,
            type=options.type,
            payload=options.payload,
            status=JobStatus.PENDING.value,
            run_at=options.run_at or datetime.now(UTC),
            max_attempts=options.max_attempts or self.settings.job_max_attempts,
            priority=(
                options.priority
                if options.priority is not None
                else self.settings.job_default_priority
            ),
            lock_timeout=options.lock_timeout or self.settings.job_lock_timeout_s,
        )

        async with self.session_factory() as session:
            session.add(job)
            await session.commit()

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            plugin_id=self.plugin_id,
            plugin_name=self.plugin_name,
            job_type=job.type,
            priority=job.priority,
            run_at=job.run_at.isoformat(),
        )

        return job.id

    async def get_job(self, job_id: UUID) -> JobInfo | None:
        """Get a job if it belongs to this plugin."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PluginJob).where(
                    PluginJob.id == job_id, PluginJob.plugin_id == self.plugin_id
                )
            )
            job = result.scalar_one_or_none()
            return JobInfo.model_validate(job) if job else None

    async def cancel_job(self, job_id: UUID) -> bool:
        """
        Cancel a pending job of this plugin.

        Running and finished jobs are left alone.

        Returns:
            True if the job was cancelled
        """
        async with self.session_factory() as session:
            outcome = await session.execute(
                update(PluginJob)
                .where(
                    PluginJob.id == job_id,
                    PluginJob.plugin_id == self.plugin_id,
                    PluginJob.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    result={"cancelled": True, "error": CANCELLED_MESSAGE},
                    completed_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        cancelled = outcome.rowcount > 0
        if cancelled:
            logger.info("Job cancelled", job_id=str(job_id), plugin_id=self.plugin_id)
        return cancelled

    async def get_pending_count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(PluginJob.id)).where(
                    PluginJob.plugin_id == self.plugin_id,
                    PluginJob.status == JobStatus.PENDING.value,
                )
            )
            return result.scalar() or 0

    async def get_jobs(
        self, status: JobStatus | None = None, limit: int = 50
    ) -> list[JobInfo]:
        """List this plugin's jobs, newest first."""
        query = select(PluginJob).where(PluginJob.plugin_id == self.plugin_id)
        if status is not None:
            query = query.where(PluginJob.status == JobStatus(status).value)
        query = query.order_by(PluginJob.created_at.desc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [JobInfo.model_validate(job) for job in result.scalars().all()]


def create_job_queue(
    session_factory: async_sessionmaker[AsyncSession],
    plugin_id: str,
    plugin_name: str,
    settings: Settings | None = None,
) -> PluginJobQueue:
    """Create the job queue handed to a plugin."""
    return PluginJobQueue(
        session_factory, plugin_id, plugin_name, settings or get_settings()
    )
