import pytest
import structlog

from plugin_jobs.config.logging import add_service_context, job_context
from plugin_jobs.jobs.schemas import EnqueueJobOptions


def test_service_context_processor(settings):
    processor = add_service_context(settings)

    event = processor(None, "info", {"event": "Job enqueued"})

    assert event["service"] == "CFP Plugin Jobs"
    assert event["environment"] == "test"


def test_job_context_binds_and_restores():
    structlog.contextvars.clear_contextvars()

    with job_context(worker_id="worker-1", plugin_id="plugin-1"):
        assert structlog.contextvars.get_contextvars() == {
            "worker_id": "worker-1",
            "plugin_id": "plugin-1",
        }

    assert structlog.contextvars.get_contextvars() == {}


def test_job_context_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown job context keys"):
        with job_context(user_id="u1"):
            pass


async def test_handlers_run_inside_job_context(worker, registry, queue):
    seen = {}

    async def capture(payload):
        seen.update(structlog.contextvars.get_contextvars())
        return {"success": True}

    def capture_sync(payload):
        seen["sync"] = structlog.contextvars.get_contextvars()
        return {"success": True}

    registry.register("plugin-1", "capture", capture)
    registry.register("plugin-1", "capture-sync", capture_sync)
    job_id = await queue.enqueue(EnqueueJobOptions(type="capture", priority=1))
    await queue.enqueue(EnqueueJobOptions(type="capture-sync", priority=2))

    await worker.process_jobs()

    worker_id = worker.get_worker_info().id
    assert seen["worker_id"] == worker_id
    assert seen["job_id"] == str(job_id)
    assert seen["plugin_id"] == "plugin-1"
    assert seen["job_type"] == "capture"
    assert seen["sync"]["job_type"] == "capture-sync"
    assert "job_id" not in structlog.contextvars.get_contextvars()
