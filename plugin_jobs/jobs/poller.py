"""
In-process job poller.

Drives a ``JobWorker`` on a fixed interval so jobs run without an external
cron caller. Errors in a cycle are logged and the loop keeps going.
"""

import asyncio
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings
from plugin_jobs.jobs.schemas import PollerStatus, WorkerOptions
from plugin_jobs.jobs.service import JobService
from plugin_jobs.jobs.worker import JobWorker

logger = get_logger(__name__)

MIN_POLL_INTERVAL_S = 5
MAX_POLL_INTERVAL_S = 300


def clamp_poll_interval(seconds: int) -> int:
    return max(MIN_POLL_INTERVAL_S, min(MAX_POLL_INTERVAL_S, seconds))


class JobPoller:
    """Background polling loop around a worker."""

    def __init__(
        self,
        worker: JobWorker,
        service: JobService,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.worker = worker
        self.service = service
        self.session_factory = session_factory
        self.settings = settings
        self.poll_interval_s = clamp_poll_interval(settings.job_poll_interval_s)

        self._task: asyncio.Task | None = None
        self.started_at: datetime | None = None
        self.last_poll_at: datetime | None = None
        self.cycle_count = 0
        self.total_processed = 0
        self.total_failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """
        Start polling in a background task.

        Returns:
            False if the poller was already running
        """
        if self.running:
            logger.info("Job poller already running, skipping start")
            return False

        self.started_at = datetime.now(UTC)
        self.cycle_count = 0
        self.total_processed = 0
        self.total_failed = 0

        logger.info("Starting job poller", poll_interval_s=self.poll_interval_s)
        self._task = asyncio.create_task(self._poll_loop(), name="plugin-job-poller")
        return True

    async def stop(self) -> None:
        """Stop polling. A job already being handled is cancelled and released."""
        if self._task is None:
            return

        uptime_s = (
            int((datetime.now(UTC) - self.started_at).total_seconds())
            if self.started_at
            else None
        )
        logger.info(
            "Stopping job poller",
            uptime_s=uptime_s,
            cycles=self.cycle_count,
            total_processed=self.total_processed,
            total_failed=self.total_failed,
        )

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def status(self) -> PollerStatus:
        return PollerStatus(
            running=self.running,
            started_at=self.started_at,
            last_poll_at=self.last_poll_at,
            cycle_count=self.cycle_count,
            total_processed=self.total_processed,
            total_failed=self.total_failed,
            poll_interval_s=self.poll_interval_s,
        )

    async def _poll_loop(self) -> None:
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.poll_interval_s)

    async def run_cycle(self) -> None:
        """Run one poll cycle: periodic stale recovery, one batch, periodic stats."""
        self.cycle_count += 1
        self.last_poll_at = datetime.now(UTC)

        try:
            if self.cycle_count % self.settings.job_stale_recovery_every == 0:
                async with self.session_factory() as session:
                    await self.worker.lock_manager.recover_stale_locks(session)

            results = await self.worker.process_jobs(
                WorkerOptions(
                    batch_size=self.settings.job_batch_size,
                    recover_stale_locks=False,
                )
            )

            if results:
                succeeded = sum(1 for result in results if result.success)
                failed = len(results) - succeeded
                self.total_processed += succeeded
                self.total_failed += failed

                logger.info(
                    "Poll cycle processed jobs",
                    job_count=len(results),
                    succeeded=succeeded,
                    failed=failed,
                )

            if self.cycle_count % self.settings.job_stats_log_every == 0:
                async with self.session_factory() as session:
                    stats = await self.service.get_job_stats(session)
                logger.info(
                    "Job queue stats",
                    **stats.model_dump(),
                    total_processed=self.total_processed,
                    total_failed=self.total_failed,
                    cycles=self.cycle_count,
                )

        except Exception:
            logger.exception("Error during poll cycle", cycle=self.cycle_count)
