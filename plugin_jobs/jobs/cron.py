"""
Cron entry point for plugin job processing.

An external scheduler calls ``POST /cron/plugin-jobs`` every few minutes.
Both methods require the shared ``CRON_SECRET``.
"""

import time
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings, SettingsDep, get_settings
from plugin_jobs.core.exceptions import UnauthorizedError, create_success_response
from plugin_jobs.core.security import verify_cron_secret
from plugin_jobs.infra.database import SessionDep
from plugin_jobs.jobs.schemas import CronRunResponse, WorkerOptions
from plugin_jobs.jobs.service import JobService
from plugin_jobs.jobs.worker import JobWorker

logger = get_logger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])

CATCHUP_MAX_ITERATIONS = 100


async def require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not configured, cron endpoints are disabled")
    if not verify_cron_secret(settings, x_cron_secret, authorization):
        raise UnauthorizedError()


def get_job_worker(request: Request) -> JobWorker:
    """Get the worker owned by the running application."""
    return request.app.state.job_worker


CronAuthDep = Depends(require_cron_secret)


@router.get("/plugin-jobs", response_model=dict, dependencies=[CronAuthDep])
async def get_cron_status(
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Read-only queue status; processes nothing."""

    stats = await JobService(settings).get_job_stats(session)

    return create_success_response(
        data={"stats": stats.model_dump()}, message="Use POST to process jobs"
    )


@router.post("/plugin-jobs", response_model=dict, dependencies=[CronAuthDep])
async def process_plugin_jobs(
    batch: int | None = Query(default=None, ge=1, le=1000, description="Jobs per batch"),
    catchup: bool = Query(default=False, description="Drain all due jobs"),
    cleanup: bool = Query(default=False, description="Delete old finished jobs"),
    cleanup_days: int | None = Query(
        default=None, ge=1, description="Retention for cleanup in days"
    ),
    worker: JobWorker = Depends(get_job_worker),
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Recover stale locks, process due jobs and optionally clean up."""

    start = time.monotonic()
    job_service = JobService(settings)

    stats_before = await job_service.get_job_stats(session)
    recovered_locks = await worker.lock_manager.recover_stale_locks(session)

    options = WorkerOptions(
        batch_size=batch or settings.job_batch_size, recover_stale_locks=False
    )
    if catchup:
        summary = await worker.process_all_pending_jobs(
            CATCHUP_MAX_ITERATIONS, options
        )
        processed, failed, iterations = (
            summary.processed,
            summary.failed,
            summary.iterations,
        )
    else:
        results = await worker.process_jobs(options)
        processed = sum(1 for result in results if result.success)
        failed = len(results) - processed
        iterations = 1

    cleaned_up = None
    if cleanup:
        cleaned_up = await job_service.cleanup_old_jobs(session, cleanup_days)

    stats_after = await job_service.get_job_stats(session)

    response = CronRunResponse(
        success=True,
        processed=processed,
        failed=failed,
        iterations=iterations,
        recovered_locks=recovered_locks,
        cleaned_up=cleaned_up,
        duration_ms=int((time.monotonic() - start) * 1000),
        stats_before=stats_before,
        stats_after=stats_after,
    )

    logger.info(
        "Cron job processing finished",
        processed=processed,
        failed=failed,
        iterations=iterations,
        recovered_locks=recovered_locks,
        cleaned_up=cleaned_up,
    )

    return create_success_response(data=response.model_dump())
