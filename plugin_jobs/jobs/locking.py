"""
Atomic job acquisition and lease management.

Every transition here is a single conditional UPDATE so that concurrent
workers never both believe they hold the same job. On PostgreSQL the claim
subquery uses FOR UPDATE SKIP LOCKED; SQLite engines are configured to take
the write lock at BEGIN (see ``plugin_jobs.infra.database``).
"""

import os
import random
import secrets
import string
import time
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings
from plugin_jobs.jobs.models import JobStatus, PluginJob
from plugin_jobs.jobs.schemas import AcquiredJob

logger = get_logger(__name__)

BACKOFF_BASE_MS = 5000
BACKOFF_MAX_MS = 300_000
BACKOFF_JITTER = (0.75, 1.25)

_WORKER_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_worker_id() -> str:
    """Generate a unique worker id: ``worker-<pid>-<epoch ms>-<random>``."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_WORKER_ID_ALPHABET) for _ in range(8))
    return f"worker-{os.getpid()}-{timestamp}-{suffix}"


def calculate_backoff(
    attempt: int,
    base_delay_ms: int = BACKOFF_BASE_MS,
    max_delay_ms: int = BACKOFF_MAX_MS,
) -> int:
    """
    Calculate the retry delay in milliseconds for a failed attempt.

    Exponential in the attempt number, capped at ``max_delay_ms``, then
    scaled by a uniform jitter factor in [0.75, 1.25].

    Args:
        attempt: Attempt that just failed (1-based)
        base_delay_ms: Delay after the first attempt
        max_delay_ms: Upper bound before jitter

    Returns:
        Delay in milliseconds
    """
    attempt = max(1, attempt)
    # Cap the exponent so huge attempt numbers don't build giant ints
    exponential = base_delay_ms * (2 ** min(attempt - 1, 62))
    delay = min(max_delay_ms, exponential)
    return int(delay * random.uniform(*BACKOFF_JITTER))


def _claimed_values(worker_id: str, now: datetime) -> dict[str, Any]:
    return {
        "status": JobStatus.RUNNING.value,
        "locked_by": worker_id,
        "locked_at": now,
        "started_at": func.coalesce(PluginJob.started_at, now),
        "attempts": PluginJob.attempts + 1,
    }


def _eligible(now: datetime):
    return and_(
        PluginJob.status == JobStatus.PENDING.value,
        PluginJob.run_at <= now,
        PluginJob.attempts < PluginJob.max_attempts,
    )


def _owned_by(job_id: UUID, worker_id: str):
    return and_(
        PluginJob.id == job_id,
        PluginJob.locked_by == worker_id,
        PluginJob.status == JobStatus.RUNNING.value,
    )


class JobLockManager:
    """Lease primitives over the ``plugin_jobs`` table."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def stale_threshold_s(self) -> int:
        return self.settings.job_stale_lock_threshold_s

    async def acquire_jobs(
        self, session: AsyncSession, worker_id: str, batch_size: int = 1
    ) -> list[AcquiredJob]:
        """
        Atomically claim up to ``batch_size`` eligible jobs.

        Eligible means pending, due, and with attempts remaining. Jobs are
        claimed oldest-highest-priority first.
        """
        if batch_size < 1:
            return []

        now = datetime.now(UTC)

        candidates = (
            select(PluginJob.id)
            .where(_eligible(now))
            .order_by(PluginJob.priority, PluginJob.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

        result = await session.execute(
            update(PluginJob)
            .where(PluginJob.id.in_(candidates), _eligible(now))
            .values(**_claimed_values(worker_id, now))
            .returning(PluginJob)
            .execution_options(synchronize_session=False)
        )
        claimed = [AcquiredJob.model_validate(job) for job in result.scalars().all()]
        await session.commit()

        # RETURNING order is unspecified
        claimed.sort(key=lambda job: (job.priority, job.created_at))

        if claimed:
            logger.info(
                "Claimed jobs",
                worker_id=worker_id,
                job_count=len(claimed),
                job_ids=[str(job.id) for job in claimed],
            )

        return claimed

    async def acquire_job_by_id(
        self, session: AsyncSession, job_id: UUID, worker_id: str
    ) -> AcquiredJob | None:
        """Claim one specific job; ``None`` if it is not pending and due."""
        now = datetime.now(UTC)

        result = await session.execute(
            update(PluginJob)
            .where(PluginJob.id == job_id, _eligible(now))
            .values(**_claimed_values(worker_id, now))
            .returning(PluginJob)
            .execution_options(synchronize_session=False)
        )
        job = result.scalars().first()
        acquired = AcquiredJob.model_validate(job) if job else None
        await session.commit()

        return acquired

    async def complete_job(
        self,
        session: AsyncSession,
        job_id: UUID,
        worker_id: str,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Mark a leased job completed. No-op if the lease was lost."""
        outcome = await session.execute(
            update(PluginJob)
            .where(_owned_by(job_id, worker_id))
            .values(
                status=JobStatus.COMPLETED.value,
                completed_at=datetime.now(UTC),
                result=result,
                locked_by=None,
                locked_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        updated = outcome.rowcount > 0
        if not updated:
            logger.warning(
                "Completion ignored, lease not held",
                job_id=str(job_id),
                worker_id=worker_id,
            )
        return updated

    async def fail_job(
        self,
        session: AsyncSession,
        job_id: UUID,
        worker_id: str,
        error: str,
        is_final: bool,
        run_at: datetime | None = None,
    ) -> bool:
        """
        Record a failed attempt for a leased job.

        Args:
            session: Database session
            job_id: Job ID
            worker_id: Worker that holds the lease
            error: Error message stored in ``result.error``
            is_final: Whether attempts are exhausted
            run_at: Earliest retry time for a non-final failure

        Returns:
            True if the row was updated, False if the lease was lost
        """
        values: dict[str, Any] = {
            "result": {"error": error},
            "locked_by": None,
            "locked_at": None,
        }
        if is_final:
            values.update(
                status=JobStatus.FAILED.value, completed_at=datetime.now(UTC)
            )
        else:
            values.update(status=JobStatus.PENDING.value, completed_at=None)
            if run_at is not None:
                values["run_at"] = run_at

        outcome = await session.execute(
            update(PluginJob)
            .where(_owned_by(job_id, worker_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        return outcome.rowcount > 0

    async def release_lock(
        self, session: AsyncSession, job_id: UUID, worker_id: str
    ) -> bool:
        """Give a leased job back to the queue without recording a failure."""
        outcome = await session.execute(
            update(PluginJob)
            .where(PluginJob.id == job_id, PluginJob.locked_by == worker_id)
            .values(status=JobStatus.PENDING.value, locked_by=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        return outcome.rowcount > 0

    async def extend_lock(
        self, session: AsyncSession, job_id: UUID, worker_id: str
    ) -> bool:
        """Refresh the lease start of a long-running job."""
        outcome = await session.execute(
            update(PluginJob)
            .where(_owned_by(job_id, worker_id))
            .values(locked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        return outcome.rowcount > 0

    def _stale_cutoff(self) -> datetime:
        return datetime.now(UTC) - timedelta(seconds=self.stale_threshold_s)

    async def recover_stale_locks(self, session: AsyncSession) -> int:
        """
        Reclaim running jobs whose lease outlived the stale threshold.

        Jobs with attempts left go back to pending. Jobs that were on their
        last attempt are failed, since they can never be acquired again.

        Returns:
            Number of jobs reclaimed
        """
        cutoff = self._stale_cutoff()
        stale = and_(
            PluginJob.status == JobStatus.RUNNING.value,
            PluginJob.locked_at.is_not(None),
            PluginJob.locked_at < cutoff,
        )

        requeued = await session.execute(
            update(PluginJob)
            .where(stale, PluginJob.attempts < PluginJob.max_attempts)
            .values(status=JobStatus.PENDING.value, locked_by=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        exhausted = await session.execute(
            update(PluginJob)
            .where(stale, PluginJob.attempts >= PluginJob.max_attempts)
            .values(
                status=JobStatus.FAILED.value,
                locked_by=None,
                locked_at=None,
                completed_at=datetime.now(UTC),
                result={
                    "error": (
                        f"Lock expired after {self.stale_threshold_s}s "
                        "on final attempt"
                    )
                },
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        recovered = requeued.rowcount + exhausted.rowcount
        if recovered:
            logger.warning(
                "Recovered stale job locks",
                requeued=requeued.rowcount,
                failed=exhausted.rowcount,
                threshold_seconds=self.stale_threshold_s,
            )

        return recovered

    async def get_stale_lock_count(self, session: AsyncSession) -> int:
        """Count running jobs a stale-lock sweep would reclaim now."""
        result = await session.execute(
            select(func.count(PluginJob.id)).where(
                PluginJob.status == JobStatus.RUNNING.value,
                PluginJob.locked_at.is_not(None),
                PluginJob.locked_at < self._stale_cutoff(),
            )
        )
        return result.scalar() or 0
