"""
Plugin background jobs.

This package provides a durable job queue for plugins with:
- Atomic lease-based claims so one job runs on at most one worker at a time
- Per-plugin queue facade and cross-plugin admin queries
- Retry with exponential backoff and stale lease recovery
- Explicit handler registry, batch worker and in-process poller
"""

from plugin_jobs.jobs.locking import (
    JobLockManager,
    calculate_backoff,
    generate_worker_id,
)
from plugin_jobs.jobs.models import JobStatus, PluginJob
from plugin_jobs.jobs.poller import JobPoller
from plugin_jobs.jobs.queue import PluginJobQueue, create_job_queue
from plugin_jobs.jobs.registry import JobHandlerRegistry
from plugin_jobs.jobs.schemas import (
    AcquiredJob,
    EnqueueJobOptions,
    JobInfo,
    JobResult,
    JobStats,
    ProcessingResult,
    WorkerInfo,
    WorkerOptions,
)
from plugin_jobs.jobs.service import JobService
from plugin_jobs.jobs.worker import JobWorker, LockExtender

__all__ = [
    "AcquiredJob",
    "EnqueueJobOptions",
    "JobHandlerRegistry",
    "JobInfo",
    "JobLockManager",
    "JobPoller",
    "JobResult",
    "JobService",
    "JobStats",
    "JobStatus",
    "JobWorker",
    "LockExtender",
    "PluginJob",
    "PluginJobQueue",
    "ProcessingResult",
    "WorkerInfo",
    "WorkerOptions",
    "calculate_backoff",
    "create_job_queue",
    "generate_worker_id",
]
