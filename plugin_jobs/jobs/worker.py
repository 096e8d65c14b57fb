"""
Plugin job worker.

Claims due jobs through the locking layer, dispatches them to registered
plugin handlers and records the outcome. A worker is driven externally, by
the cron endpoint or the in-process poller; it has no loop of its own.
"""

import asyncio
import inspect
import os
import time
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plugin_jobs.config.logging import get_logger, job_context
from plugin_jobs.config.settings import Settings
from plugin_jobs.core.exceptions import JobHandlerNotFoundError
from plugin_jobs.jobs.locking import (
    JobLockManager,
    calculate_backoff,
    generate_worker_id,
)
from plugin_jobs.jobs.registry import JobHandler, JobHandlerRegistry
from plugin_jobs.jobs.schemas import (
    AcquiredJob,
    DrainSummary,
    JobResult,
    ProcessingResult,
    WorkerInfo,
    WorkerOptions,
)

logger = get_logger(__name__)

UNKNOWN_ERROR = "Unknown error"


class LockExtender:
    """
    Async context manager that keeps a job lease fresh while a handler runs.

    Usage:
        async with worker.lock_extender(job_id):
            await do_long_work()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_manager: JobLockManager,
        job_id: UUID,
        worker_id: str,
        interval_s: float,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.job_id = job_id
        self.worker_id = worker_id
        self.interval_s = interval_s
        self.extensions = 0
        self._task: asyncio.Task | None = None

    async def _extend_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                async with self.session_factory() as session:
                    extended = await self.lock_manager.extend_lock(
                        session, self.job_id, self.worker_id
                    )
                if extended:
                    self.extensions += 1
                else:
                    logger.warning(
                        "Failed to extend job lock",
                        job_id=str(self.job_id),
                        worker_id=self.worker_id,
                    )
            except Exception:
                logger.exception(
                    "Error extending job lock",
                    job_id=str(self.job_id),
                    worker_id=self.worker_id,
                )

    async def __aenter__(self) -> "LockExtender":
        self._task = asyncio.create_task(self._extend_loop())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class JobWorker:
    """
    Processes plugin jobs in batches.

    Features:
    - Atomic batch claims through ``JobLockManager``
    - Sync or async handlers resolved per plugin and job type
    - Exponential backoff with jitter for retries
    - Optional lease extension for long-running handlers
    - Lease release when the processing task is cancelled
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: JobHandlerRegistry,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.settings = settings
        self.lock_manager = JobLockManager(settings)
        self._info: WorkerInfo | None = None

    def get_worker_info(self) -> WorkerInfo | None:
        """Worker identity and counters; ``None`` until the first cycle."""
        return self._info

    def reset(self) -> None:
        """Forget the worker identity, counters and registered handlers."""
        self._info = None
        self.registry.clear()

    def _ensure_info(self) -> WorkerInfo:
        if self._info is None:
            self._info = WorkerInfo(
                id=generate_worker_id(),
                pid=os.getpid(),
                started_at=datetime.now(UTC),
            )
        return self._info

    def lock_extender(
        self, job_id: UUID, interval_s: float | None = None
    ) -> LockExtender:
        """Create a lease extender for a job claimed by this worker."""
        info = self._ensure_info()
        return LockExtender(
            self.session_factory,
            self.lock_manager,
            job_id,
            info.id,
            interval_s or self.settings.job_lock_extend_interval_s,
        )

    async def process_jobs(
        self, options: WorkerOptions | None = None
    ) -> list[ProcessingResult]:
        """
        Run one processing cycle.

        Optionally recovers stale locks, claims up to ``batch_size`` jobs and
        processes them one after another.

        Args:
            options: Cycle options, defaults apply when omitted

        Returns:
            One result per claimed job, in claim order
        """
        options = options or WorkerOptions()
        batch_size = options.batch_size or self.settings.job_batch_size
        info = self._ensure_info()

        if options.recover_stale_locks:
            async with self.session_factory() as session:
                recovered = await self.lock_manager.recover_stale_locks(session)
            if recovered > 0:
                logger.info(
                    "Recovered stale locks before processing",
                    worker_id=info.id,
                    recovered=recovered,
                )

        async with self.session_factory() as session:
            jobs = await self.lock_manager.acquire_jobs(session, info.id, batch_size)

        if not jobs:
            return []

        logger.info("Processing jobs", worker_id=info.id, job_count=len(jobs))

        results: list[ProcessingResult] = []
        for job in jobs:
            with job_context(
                worker_id=info.id,
                job_id=job.id,
                plugin_id=job.plugin_id,
                job_type=job.type,
            ):
                result = await self._process_job(job, info.id, options)
            results.append(result)

            if result.success:
                info.jobs_processed += 1
            else:
                info.jobs_failed += 1

        return results

    async def process_all_pending_jobs(
        self, max_iterations: int = 100, options: WorkerOptions | None = None
    ) -> DrainSummary:
        """Run cycles until one claims nothing or ``max_iterations`` is reached."""
        summary = DrainSummary()

        for _ in range(max_iterations):
            results = await self.process_jobs(options)
            summary.iterations += 1

            if not results:
                break

            for result in results:
                if result.success:
                    summary.processed += 1
                else:
                    summary.failed += 1

        logger.info(
            "Drained pending jobs",
            processed=summary.processed,
            failed=summary.failed,
            iterations=summary.iterations,
        )
        return summary

    async def _process_job(
        self, job: AcquiredJob, worker_id: str, options: WorkerOptions
    ) -> ProcessingResult:
        """Process a single claimed job and persist its outcome."""
        start = time.monotonic()

        logger.info(
            "Processing job started",
            attempt=job.attempts,
            max_attempts=job.max_attempts,
        )

        try:
            handler = self.registry.get(job.plugin_id, job.type)
            if handler is None:
                raise JobHandlerNotFoundError(job.plugin_id, job.type)

            if options.extend_locks:
                async with self.lock_extender(job.id):
                    outcome = await self._run_handler(handler, job.payload)
            else:
                outcome = await self._run_handler(handler, job.payload)

        except asyncio.CancelledError:
            logger.warning("Job processing cancelled, releasing lease")
            await asyncio.shield(self._release(job.id, worker_id))
            raise

        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(
                "Job error",
                error=error,
                attempts=job.attempts,
                final=job.is_final_attempt,
            )
            await self._record_failure(job, worker_id, error)
            return self._result(job, start, success=False, error=error)

        if outcome.success:
            async with self.session_factory() as session:
                await self.lock_manager.complete_job(
                    session, job.id, worker_id, outcome.data
                )
            logger.info("Job completed", duration_ms=self._elapsed_ms(start))
            return self._result(job, start, success=True)

        error = outcome.error or UNKNOWN_ERROR
        event = (
            "Job failed permanently"
            if job.is_final_attempt
            else "Job failed, will retry"
        )
        logger.warning(
            event,
            error=error,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
        )
        await self._record_failure(job, worker_id, error)
        return self._result(job, start, success=False, error=error)

    async def _run_handler(
        self, handler: JobHandler, payload: dict[str, Any]
    ) -> JobResult:
        # Sync handlers run in a thread so the loop keeps extending leases
        if inspect.iscoroutinefunction(handler):
            outcome = handler(payload)
        else:
            outcome = await asyncio.to_thread(handler, payload)
        if inspect.isawaitable(outcome):
            outcome = await outcome

        if isinstance(outcome, JobResult):
            return outcome
        if isinstance(outcome, Mapping):
            return JobResult.model_validate(dict(outcome))
        raise TypeError(
            f"Job handler returned {type(outcome).__name__}, expected JobResult or mapping"
        )

    async def _record_failure(
        self, job: AcquiredJob, worker_id: str, error: str
    ) -> None:
        is_final = job.is_final_attempt
        run_at = None
        if not is_final:
            delay_ms = calculate_backoff(
                job.attempts,
                self.settings.job_backoff_base_ms,
                self.settings.job_max_backoff_ms,
            )
            run_at = datetime.now(UTC) + timedelta(milliseconds=delay_ms)

        async with self.session_factory() as session:
            await self.lock_manager.fail_job(
                session, job.id, worker_id, error, is_final, run_at
            )

    async def _release(self, job_id: UUID, worker_id: str) -> None:
        async with self.session_factory() as session:
            await self.lock_manager.release_lock(session, job_id, worker_id)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _result(
        self,
        job: AcquiredJob,
        start: float,
        success: bool,
        error: str | None = None,
    ) -> ProcessingResult:
        return ProcessingResult(
            job_id=job.id,
            plugin_id=job.plugin_id,
            type=job.type,
            success=success,
            duration_ms=self._elapsed_ms(start),
            attempts=job.attempts,
            error=error,
        )
