"""Tests for the per-plugin queue facade and cross-plugin job queries."""

from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import naive_utc
from plugin_jobs.core.exceptions import (
    InvalidJobStateError,
    JobAlreadyCompletedError,
    JobNotFoundError,
    ValidationError,
)
from plugin_jobs.jobs.models import JobStatus
from plugin_jobs.jobs.schemas import EnqueueJobOptions


class TestEnqueue:
    async def test_enqueue_uses_defaults(self, queue, fetch_job):
        before = naive_utc()
        job_id = await queue.enqueue(EnqueueJobOptions(type="send-email"))

        assert isinstance(job_id, UUID)
        row = await fetch_job(job_id)
        assert row.plugin_id == "plugin-1"
        assert row.type == "send-email"
        assert row.payload == {}
        assert row.status == JobStatus.PENDING
        assert row.attempts == 0
        assert row.max_attempts == 3
        assert row.priority == 100
        assert row.lock_timeout == 300
        assert row.result is None
        assert row.locked_by is None
        assert row.run_at >= before

    async def test_enqueue_with_overrides(self, queue, fetch_job):
        run_at = datetime.now(UTC) + timedelta(hours=2)
        job_id = await queue.enqueue(
            EnqueueJobOptions(
                type="report",
                payload={"paper_id": "p-1"},
                run_at=run_at,
                max_attempts=5,
                priority=0,
                lock_timeout=60,
            )
        )

        row = await fetch_job(job_id)
        assert row.payload == {"paper_id": "p-1"}
        assert row.max_attempts == 5
        assert row.priority == 0
        assert row.lock_timeout == 60
        assert row.run_at == naive_utc(run_at)

    async def test_offset_run_at_is_stored_as_utc(
        self, queue, fetch_job, session_factory, lock_manager
    ):
        eastern = timezone(timedelta(hours=-5))
        run_at = (datetime.now(UTC) + timedelta(hours=1)).astimezone(eastern)

        job_id = await queue.enqueue(EnqueueJobOptions(type="later", run_at=run_at))

        row = await fetch_job(job_id)
        assert row.run_at == naive_utc(run_at)

        # Due in an hour, whatever offset it was given in
        async with session_factory() as session:
            assert await lock_manager.acquire_jobs(session, "worker-a", 10) == []

    def test_naive_run_at_is_taken_as_utc(self):
        naive = datetime(2026, 3, 1, 12, 0)

        options = EnqueueJobOptions(type="x", run_at=naive)

        assert options.run_at == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_options_validation(self):
        with pytest.raises(PydanticValidationError):
            EnqueueJobOptions(type="")
        with pytest.raises(PydanticValidationError):
            EnqueueJobOptions(type="x", max_attempts=0)
        with pytest.raises(PydanticValidationError):
            EnqueueJobOptions(type="x", lock_timeout=0)


class TestPluginScope:
    async def test_get_job_scoped_to_plugin(self, queue, other_queue):
        job_id = await queue.enqueue(EnqueueJobOptions(type="a", payload={"k": "v"}))

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.id == job_id
        assert job.status == JobStatus.PENDING
        assert job.payload == {"k": "v"}

        assert await other_queue.get_job(job_id) is None
        assert await queue.get_job(uuid4()) is None

    async def test_cancel_pending_job(self, queue, fetch_job):
        job_id = await queue.enqueue(EnqueueJobOptions(type="a"))

        assert await queue.cancel_job(job_id) is True

        row = await fetch_job(job_id)
        assert row.status == JobStatus.FAILED
        assert row.result == {"cancelled": True, "error": "Job cancelled by plugin"}
        assert row.completed_at is not None

        # Already failed
        assert await queue.cancel_job(job_id) is False

    async def test_cancel_ignores_running_job(self, queue, insert_job, fetch_job):
        job = await insert_job(
            status=JobStatus.RUNNING.value,
            attempts=1,
            locked_by="worker-a",
            locked_at=datetime.now(UTC),
        )

        assert await queue.cancel_job(job.id) is False
        row = await fetch_job(job.id)
        assert row.status == JobStatus.RUNNING

    async def test_cancel_ignores_other_plugins_job(self, queue, other_queue, fetch_job):
        job_id = await other_queue.enqueue(EnqueueJobOptions(type="a"))

        assert await queue.cancel_job(job_id) is False
        row = await fetch_job(job_id)
        assert row.status == JobStatus.PENDING

    async def test_pending_count(self, queue, other_queue, insert_job):
        await queue.enqueue(EnqueueJobOptions(type="a"))
        await queue.enqueue(
            EnqueueJobOptions(type="a", run_at=datetime.now(UTC) + timedelta(days=1))
        )
        await other_queue.enqueue(EnqueueJobOptions(type="a"))
        await insert_job(status=JobStatus.COMPLETED.value)

        # Future jobs are still pending for the plugin view
        assert await queue.get_pending_count() == 2
        assert await other_queue.get_pending_count() == 1

    async def test_get_jobs_newest_first_with_filters(self, queue, insert_job):
        now = datetime.now(UTC)
        oldest = await insert_job(created_at=now - timedelta(minutes=3))
        middle = await insert_job(
            created_at=now - timedelta(minutes=2), status=JobStatus.COMPLETED.value
        )
        newest = await insert_job(created_at=now - timedelta(minutes=1))
        await insert_job(plugin_id="plugin-2", created_at=now)

        jobs = await queue.get_jobs()
        assert [job.id for job in jobs] == [newest.id, middle.id, oldest.id]

        pending = await queue.get_jobs(status=JobStatus.PENDING)
        assert [job.id for job in pending] == [newest.id, oldest.id]

        limited = await queue.get_jobs(limit=1)
        assert [job.id for job in limited] == [newest.id]


class TestJobService:
    async def test_pending_jobs_count_only_due(self, session_factory, service, insert_job):
        await insert_job()
        await insert_job(plugin_id="plugin-2")
        await insert_job(run_at=datetime.now(UTC) + timedelta(hours=1))
        await insert_job(status=JobStatus.FAILED.value)

        async with session_factory() as session:
            assert await service.get_pending_jobs_count(session) == 2

    async def test_job_stats(self, session_factory, service, insert_job):
        await insert_job()
        await insert_job()
        await insert_job(
            status=JobStatus.RUNNING.value,
            attempts=1,
            locked_by="w",
            locked_at=datetime.now(UTC),
        )
        await insert_job(status=JobStatus.COMPLETED.value)

        async with session_factory() as session:
            stats = await service.get_job_stats(session)

        assert stats.pending == 2
        assert stats.running == 1
        assert stats.completed == 1
        assert stats.failed == 0
        assert stats.total == 4

    async def test_job_stats_empty(self, session_factory, service):
        async with session_factory() as session:
            stats = await service.get_job_stats(session)
        assert stats.model_dump() == {
            "pending": 0,
            "running": 0,
            "completed": 0,
            "failed": 0,
            "total": 0,
        }

    async def test_get_job_by_id_any_plugin(self, session_factory, service, insert_job):
        job = await insert_job(plugin_id="plugin-9")

        async with session_factory() as session:
            found = await service.get_job_by_id(session, job.id)
            missing = await service.get_job_by_id(session, uuid4())

        assert found.plugin_id == "plugin-9"
        assert missing is None

    async def test_retry_failed_job_resets_state(
        self, session_factory, service, insert_job, fetch_job
    ):
        job = await insert_job(
            status=JobStatus.FAILED.value,
            attempts=3,
            result={"error": "boom"},
            started_at=datetime.now(UTC) - timedelta(minutes=5),
            completed_at=datetime.now(UTC) - timedelta(minutes=4),
            run_at=datetime.now(UTC) - timedelta(minutes=10),
        )

        async with session_factory() as session:
            info = await service.retry_job(session, job.id)

        assert info.status == JobStatus.PENDING
        assert info.attempts == 0

        row = await fetch_job(job.id)
        assert row.status == JobStatus.PENDING
        assert row.attempts == 0
        assert row.result is None
        assert row.started_at is None
        assert row.completed_at is None
        assert row.locked_by is None
        assert row.run_at > naive_utc() - timedelta(minutes=1)

    async def test_retry_missing_job(self, session_factory, service):
        async with session_factory() as session:
            with pytest.raises(JobNotFoundError):
                await service.retry_job(session, uuid4())

    async def test_retry_completed_job(self, session_factory, service, insert_job):
        job = await insert_job(status=JobStatus.COMPLETED.value)

        async with session_factory() as session:
            with pytest.raises(JobAlreadyCompletedError) as exc_info:
                await service.retry_job(session, job.id)

        assert "completed" in exc_info.value.message
        assert exc_info.value.status_code == 409

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.RUNNING])
    async def test_retry_active_job(self, session_factory, service, insert_job, status):
        job = await insert_job(status=status.value)

        async with session_factory() as session:
            with pytest.raises(InvalidJobStateError) as exc_info:
                await service.retry_job(session, job.id)

        assert exc_info.value.message == f"Cannot retry job with status: {status.value}"

    async def test_recent_jobs(self, session_factory, service, insert_job):
        now = datetime.now(UTC)
        for minutes in range(5):
            await insert_job(created_at=now - timedelta(minutes=minutes))
        await insert_job(plugin_id="plugin-2")

        async with session_factory() as session:
            jobs = await service.get_recent_jobs(session, "plugin-1", limit=3)

        assert len(jobs) == 3
        assert all(job.plugin_id == "plugin-1" for job in jobs)
        assert jobs[0].created_at >= jobs[1].created_at >= jobs[2].created_at

    async def test_cleanup_old_jobs(self, session_factory, service, insert_job, fetch_job):
        old = datetime.now(UTC) - timedelta(days=40)
        old_completed = await insert_job(status=JobStatus.COMPLETED.value, completed_at=old)
        old_failed = await insert_job(status=JobStatus.FAILED.value, completed_at=old)
        recent = await insert_job(
            status=JobStatus.COMPLETED.value, completed_at=datetime.now(UTC)
        )
        pending = await insert_job()

        async with session_factory() as session:
            assert await service.cleanup_old_jobs(session) == 2

        assert await fetch_job(old_completed.id) is None
        assert await fetch_job(old_failed.id) is None
        assert await fetch_job(recent.id) is not None
        assert await fetch_job(pending.id) is not None

    async def test_cleanup_with_custom_retention(self, session_factory, service, insert_job):
        await insert_job(
            status=JobStatus.COMPLETED.value,
            completed_at=datetime.now(UTC) - timedelta(days=3),
        )

        async with session_factory() as session:
            assert await service.cleanup_old_jobs(session, older_than_days=7) == 0
            assert await service.cleanup_old_jobs(session, older_than_days=2) == 1

    async def test_clear_jobs(self, session_factory, service, insert_job, fetch_job):
        done = await insert_job(status=JobStatus.COMPLETED.value, type="a")
        failed = await insert_job(status=JobStatus.FAILED.value, type="b")
        pending = await insert_job(type="a")
        foreign = await insert_job(plugin_id="plugin-2", status=JobStatus.COMPLETED.value)

        async with session_factory() as session:
            deleted = await service.clear_jobs(
                session, "plugin-1", [JobStatus.COMPLETED], job_type="a"
            )

        assert deleted == 1
        assert await fetch_job(done.id) is None
        assert await fetch_job(failed.id) is not None
        assert await fetch_job(pending.id) is not None
        assert await fetch_job(foreign.id) is not None

    async def test_clear_rejects_active_statuses(self, session_factory, service):
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await service.clear_jobs(session, "plugin-1", [JobStatus.PENDING])
            with pytest.raises(ValidationError):
                await service.clear_jobs(session, "plugin-1", [])
