"""
Pydantic schemas for the plugin job system.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plugin_jobs.jobs.models import JobStatus


class EnqueueJobOptions(BaseModel):
    """Options supplied by a plugin when enqueueing a job."""

    type: str = Field(..., min_length=1, description="Plugin-defined job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Handler input")
    run_at: datetime | None = Field(
        default=None, description="Earliest time to run the job, defaults to now"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, description="Attempts before failure is terminal"
    )
    priority: int | None = Field(
        default=None, description="Priority, lower is serviced first"
    )
    lock_timeout: int | None = Field(
        default=None, ge=1, description="Lease duration in seconds"
    )

    @field_validator("run_at")
    @classmethod
    def normalize_run_at(cls, value: datetime | None) -> datetime | None:
        """Store run_at in UTC; naive values are taken to be UTC already."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class JobInfo(BaseModel):
    """Job information returned to plugins and admin tooling."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plugin_id: str
    type: str
    status: JobStatus
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    attempts: int
    max_attempts: int
    priority: int
    created_at: datetime
    run_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class AcquiredJob(BaseModel):
    """A job leased to a worker and ready for processing."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plugin_id: str
    type: str
    payload: dict[str, Any]
    priority: int
    attempts: int
    max_attempts: int
    lock_timeout: int
    locked_by: str
    created_at: datetime

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


class JobResult(BaseModel):
    """Outcome reported by a job handler."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class JobStats(BaseModel):
    """Queue-wide job counts."""

    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class ProcessingResult(BaseModel):
    """Per-job outcome of one worker cycle."""

    job_id: UUID
    plugin_id: str
    type: str
    success: bool
    duration_ms: int
    attempts: int
    error: str | None = None


class WorkerOptions(BaseModel):
    """Options for a single processing cycle."""

    batch_size: int | None = Field(default=None, ge=1)
    recover_stale_locks: bool = True
    extend_locks: bool = False


class WorkerInfo(BaseModel):
    """Process-local worker identity and counters."""

    id: str
    pid: int
    started_at: datetime
    jobs_processed: int = 0
    jobs_failed: int = 0


class DrainSummary(BaseModel):
    """Aggregate of a bulk drain across several cycles."""

    processed: int = 0
    failed: int = 0
    iterations: int = 0


class HandlerStats(BaseModel):
    plugins: int
    total_handlers: int


class PollerStatus(BaseModel):
    """Status of the in-process job poller."""

    running: bool
    started_at: datetime | None = None
    last_poll_at: datetime | None = None
    cycle_count: int = 0
    total_processed: int = 0
    total_failed: int = 0
    poll_interval_s: int


class ClearJobsRequest(BaseModel):
    """Admin request to delete finished jobs of a plugin."""

    statuses: list[JobStatus] = Field(..., min_length=1)
    type: str | None = None


class CronRunResponse(BaseModel):
    """Summary of a cron-triggered processing run."""

    success: bool
    processed: int
    failed: int
    iterations: int
    recovered_locks: int
    cleaned_up: int | None = None
    duration_ms: int
    stats_before: JobStats
    stats_after: JobStats
