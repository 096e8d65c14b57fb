"""
Cross-plugin job queries and administration.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings
from plugin_jobs.core.exceptions import (
    InvalidJobStateError,
    JobAlreadyCompletedError,
    JobNotFoundError,
    ValidationError,
)
from plugin_jobs.jobs.models import TERMINAL_STATUSES, JobStatus, PluginJob
from plugin_jobs.jobs.schemas import JobInfo, JobStats

logger = get_logger(__name__)


class JobService:
    """Queue-wide operations that are not scoped to a single plugin."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def get_pending_jobs_count(self, session: AsyncSession) -> int:
        """Count pending jobs that are due right now, across all plugins."""
        result = await session.execute(
            select(func.count(PluginJob.id)).where(
                PluginJob.status == JobStatus.PENDING.value,
                PluginJob.run_at <= datetime.now(UTC),
            )
        )
        return result.scalar() or 0

    async def get_job_stats(self, session: AsyncSession) -> JobStats:
        """Get job counts per status plus the total."""
        result = await session.execute(
            select(PluginJob.status, func.count(PluginJob.id)).group_by(
                PluginJob.status
            )
        )
        by_status = dict(result.all())

        counts = {status.value: by_status.get(status.value, 0) for status in JobStatus}
        return JobStats(**counts, total=sum(counts.values()))

    async def get_job_by_id(self, session: AsyncSession, job_id: UUID) -> JobInfo | None:
        """Get a job regardless of plugin, for admin tooling."""
        job = await session.get(PluginJob, job_id)
        return JobInfo.model_validate(job) if job else None

    async def retry_job(self, session: AsyncSession, job_id: UUID) -> JobInfo:
        """
        Reset a failed job so it runs again from a clean slate.

        Raises:
            JobNotFoundError: No job with this id
            JobAlreadyCompletedError: The job completed successfully
            InvalidJobStateError: The job is pending or running
        """
        job = await session.get(PluginJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.status == JobStatus.COMPLETED.value:
            raise JobAlreadyCompletedError(job_id)
        if job.status != JobStatus.FAILED.value:
            raise InvalidJobStateError(job_id, job.status)

        # Guard on status again so a concurrent retry can't double-reset
        outcome = await session.execute(
            update(PluginJob)
            .where(
                PluginJob.id == job_id,
                PluginJob.status == JobStatus.FAILED.value,
            )
            .values(
                status=JobStatus.PENDING.value,
                attempts=0,
                result=None,
                run_at=datetime.now(UTC),
                started_at=None,
                completed_at=None,
                locked_by=None,
                locked_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        if outcome.rowcount == 0:
            await session.refresh(job)
            raise InvalidJobStateError(job_id, job.status)

        await session.refresh(job)
        logger.info("Job retried", job_id=str(job_id), plugin_id=job.plugin_id)

        return JobInfo.model_validate(job)

    async def get_recent_jobs(
        self, session: AsyncSession, plugin_id: str, limit: int = 20
    ) -> list[JobInfo]:
        """Most recent jobs of a plugin, any status."""
        result = await session.execute(
            select(PluginJob)
            .where(PluginJob.plugin_id == plugin_id)
            .order_by(PluginJob.created_at.desc())
            .limit(limit)
        )
        return [JobInfo.model_validate(job) for job in result.scalars().all()]

    async def cleanup_old_jobs(
        self, session: AsyncSession, older_than_days: int | None = None
    ) -> int:
        """Delete completed and failed jobs finished before the retention cutoff."""
        retention_days = older_than_days or self.settings.job_cleanup_after_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)

        result = await session.execute(
            delete(PluginJob).where(
                PluginJob.status.in_(TERMINAL_STATUSES),
                PluginJob.completed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )

        return deleted_count

    async def clear_jobs(
        self,
        session: AsyncSession,
        plugin_id: str,
        statuses: list[JobStatus],
        job_type: str | None = None,
    ) -> int:
        """Delete a plugin's finished jobs, optionally only of one type."""
        status_values = [JobStatus(status).value for status in statuses]
        if not status_values:
            raise ValidationError("At least one status is required")

        active = [value for value in status_values if value not in TERMINAL_STATUSES]
        if active:
            raise ValidationError(
                "Only completed or failed jobs can be cleared",
                {"statuses": active},
            )

        query = delete(PluginJob).where(
            PluginJob.plugin_id == plugin_id,
            PluginJob.status.in_(status_values),
        )
        if job_type:
            query = query.where(PluginJob.type == job_type)

        result = await session.execute(
            query.execution_options(synchronize_session=False)
        )
        await session.commit()

        logger.info(
            "Cleared plugin jobs",
            plugin_id=plugin_id,
            statuses=status_values,
            job_type=job_type,
            deleted_count=result.rowcount,
        )
        return result.rowcount
