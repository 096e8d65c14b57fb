"""
Admin API endpoints for plugin jobs.

Provides queue statistics, job inspection, retry, stale lock recovery and
per-plugin job listing and clearing.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_jobs.config.logging import get_logger
from plugin_jobs.config.settings import Settings, SettingsDep
from plugin_jobs.core.exceptions import JobNotFoundError, create_success_response
from plugin_jobs.core.security import AdminDep, Principal
from plugin_jobs.infra.database import SessionDep
from plugin_jobs.jobs.locking import JobLockManager
from plugin_jobs.jobs.schemas import ClearJobsRequest
from plugin_jobs.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
plugin_router = APIRouter(prefix="/plugins", tags=["jobs"])


@router.get("/stats", response_model=dict)
async def get_job_stats(
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get job counts per status across all plugins."""

    job_service = JobService(settings)
    stats = await job_service.get_job_stats(session)
    stale_locks = await JobLockManager(settings).get_stale_lock_count(session)

    return create_success_response(
        data={**stats.model_dump(), "stale_locks": stale_locks}
    )


@router.post("/recover-stale", response_model=dict)
async def recover_stale_locks(
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Reclaim running jobs whose lease has gone stale."""

    recovered = await JobLockManager(settings).recover_stale_locks(session)

    logger.info(
        "Stale locks recovered via API",
        recovered=recovered,
        user_id=principal.user_id,
    )

    return create_success_response(data={"recovered": recovered})


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID, regardless of plugin."""

    job_service = JobService(settings)
    job = await job_service.get_job_by_id(session, job_id)

    if not job:
        raise JobNotFoundError(job_id)

    return create_success_response(data=job.model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Retry a failed job from a clean slate."""

    job_service = JobService(settings)
    job = await job_service.retry_job(session, job_id)

    logger.info(
        "Job retried via API",
        job_id=str(job_id),
        plugin_id=job.plugin_id,
        user_id=principal.user_id,
    )

    return create_success_response(
        data=job.model_dump(mode="json"), message="Job queued for retry"
    )


@plugin_router.get("/{plugin_id}/jobs", response_model=dict)
async def list_plugin_jobs(
    plugin_id: str,
    limit: int = Query(default=20, ge=1, le=500, description="Maximum results"),
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List the most recent jobs of a plugin."""

    job_service = JobService(settings)
    jobs = await job_service.get_recent_jobs(session, plugin_id, limit=limit)

    return create_success_response(
        data={
            "plugin_id": plugin_id,
            "jobs": [job.model_dump(mode="json") for job in jobs],
            "count": len(jobs),
        }
    )


@plugin_router.post("/{plugin_id}/jobs/clear", response_model=dict)
async def clear_plugin_jobs(
    plugin_id: str,
    request: ClearJobsRequest,
    principal: Principal = AdminDep,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Delete completed or failed jobs of a plugin."""

    job_service = JobService(settings)
    deleted = await job_service.clear_jobs(
        session, plugin_id, request.statuses, job_type=request.type
    )

    logger.info(
        "Plugin jobs cleared via API",
        plugin_id=plugin_id,
        deleted=deleted,
        user_id=principal.user_id,
    )

    return create_success_response(data={"plugin_id": plugin_id, "deleted": deleted})
