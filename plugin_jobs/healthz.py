from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_jobs.config.settings import Settings, SettingsDep
from plugin_jobs.core.exceptions import create_success_response
from plugin_jobs.infra.database import SessionDep
from plugin_jobs.jobs.locking import JobLockManager
from plugin_jobs.jobs.schemas import PollerStatus
from plugin_jobs.jobs.service import JobService

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    pending_due: int = 0
    running: int = 0
    failed: int = 0
    stale_locks: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    session: AsyncSession = SessionDep,
):
    """Health check with database, job queue and poller status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        queue_health = await _check_queue_health(session, settings)

    poller = getattr(request.app.state, "poller", None)
    poller_status: PollerStatus | None = poller.status() if poller else None

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
        "poller": poller_status.model_dump(mode="json") if poller_status else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(
    session: AsyncSession, settings: Settings
) -> QueueHealth:
    job_service = JobService(settings)
    stats = await job_service.get_job_stats(session)

    return QueueHealth(
        pending_due=await job_service.get_pending_jobs_count(session),
        running=stats.running,
        failed=stats.failed,
        stale_locks=await JobLockManager(settings).get_stale_lock_count(session),
    )
