"""Tests for the health, cron and admin job endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from plugin_jobs.config.settings import AuthMode, Settings
from plugin_jobs.jobs.models import JobStatus
from plugin_jobs.jobs.schemas import EnqueueJobOptions
from plugin_jobs.main import create_app


class TestHealth:
    async def test_health_check(self, async_client, queue):
        await queue.enqueue(EnqueueJobOptions(type="a"))

        response = await async_client.get("/v1/healthz")

        assert response.status_code == 200
        data = response.json()
        for key in ["ok", "data", "message", "request_id"]:
            assert key in data
        assert "X-Request-ID" in response.headers

        health = data["data"]
        assert health["ok"] is True
        assert health["version"] == "1.2.0"
        assert health["environment"] == "test"
        assert health["database"]["connected"] is True
        assert health["queue"]["pending_due"] == 1
        assert health["poller"]["running"] is False


class TestCron:
    async def test_rejects_missing_secret(self, async_client):
        response = await async_client.post("/v1/cron/plugin-jobs")
        assert response.status_code == 401
        assert response.json()["ok"] is False

    async def test_rejects_wrong_secret(self, async_client):
        response = await async_client.get(
            "/v1/cron/plugin-jobs", headers={"X-Cron-Secret": "nope"}
        )
        assert response.status_code == 401

    async def test_disabled_without_configured_secret(self, settings, database):
        settings.cron_secret = None
        app = create_app(settings, database)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get(
                "/v1/cron/plugin-jobs", headers={"X-Cron-Secret": ""}
            )
        assert response.status_code == 401

    async def test_status(self, async_client, cron_headers, queue):
        await queue.enqueue(EnqueueJobOptions(type="a"))

        response = await async_client.get("/v1/cron/plugin-jobs", headers=cron_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["stats"]["pending"] == 1
        assert body["message"] == "Use POST to process jobs"

    async def test_bearer_secret_accepted(self, async_client):
        from conftest import CRON_SECRET

        response = await async_client.get(
            "/v1/cron/plugin-jobs",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )
        assert response.status_code == 200

    async def test_process_single_batch(self, app, async_client, cron_headers, queue):
        registry = app.state.job_handlers
        registry.register("plugin-1", "ok", lambda payload: {"success": True})
        registry.register("plugin-1", "bad", lambda payload: {"success": False, "error": "x"})
        for _ in range(3):
            await queue.enqueue(EnqueueJobOptions(type="ok"))
        await queue.enqueue(EnqueueJobOptions(type="bad", max_attempts=1))

        response = await async_client.post(
            "/v1/cron/plugin-jobs", params={"batch": 2}, headers=cron_headers
        )

        assert response.status_code == 200
        run = response.json()["data"]
        assert run["success"] is True
        assert run["processed"] == 2
        assert run["failed"] == 0
        assert run["iterations"] == 1
        assert run["recovered_locks"] == 0
        assert run["cleaned_up"] is None
        assert run["stats_before"]["pending"] == 4
        assert run["stats_after"]["pending"] == 2
        assert run["stats_after"]["completed"] == 2

    async def test_process_catchup_and_cleanup(
        self, app, async_client, cron_headers, queue, insert_job
    ):
        app.state.job_handlers.register(
            "plugin-1", "ok", lambda payload: {"success": True}
        )
        for _ in range(5):
            await queue.enqueue(EnqueueJobOptions(type="ok"))
        await insert_job(
            status=JobStatus.COMPLETED.value,
            completed_at=datetime.now(UTC) - timedelta(days=60),
        )

        response = await async_client.post(
            "/v1/cron/plugin-jobs",
            params={"batch": 2, "catchup": "true", "cleanup": "true", "cleanup_days": 30},
            headers=cron_headers,
        )

        assert response.status_code == 200
        run = response.json()["data"]
        assert run["processed"] == 5
        assert run["iterations"] == 4
        assert run["cleaned_up"] == 1
        assert run["stats_after"]["pending"] == 0
        assert run["stats_after"]["completed"] == 5


class TestAdminEndpoints:
    async def test_stats(self, async_client, queue):
        await queue.enqueue(EnqueueJobOptions(type="a"))

        response = await async_client.get("/v1/jobs/stats")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pending"] == 1
        assert data["total"] == 1
        assert data["stale_locks"] == 0

    async def test_get_job(self, async_client, queue):
        job_id = await queue.enqueue(EnqueueJobOptions(type="a", payload={"x": 1}))

        response = await async_client.get(f"/v1/jobs/{job_id}")

        assert response.status_code == 200
        job = response.json()["data"]
        assert job["id"] == str(job_id)
        assert job["status"] == "pending"
        assert job["payload"] == {"x": 1}

    async def test_get_missing_job(self, async_client):
        response = await async_client.get(f"/v1/jobs/{uuid4()}")

        assert response.status_code == 404
        assert "Job not found" in response.json()["error"]["message"]

    async def test_retry_failed_job(self, async_client, insert_job):
        job = await insert_job(status=JobStatus.FAILED.value, attempts=3)

        response = await async_client.post(f"/v1/jobs/{job.id}/retry")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "pending"
        assert data["attempts"] == 0

    async def test_retry_completed_job_conflicts(self, async_client, insert_job):
        job = await insert_job(status=JobStatus.COMPLETED.value)

        response = await async_client.post(f"/v1/jobs/{job.id}/retry")

        assert response.status_code == 409
        error = response.json()["error"]
        assert "already completed" in error["message"]
        assert error["details"]["status"] == "completed"

    async def test_retry_pending_job_conflicts(self, async_client, insert_job):
        job = await insert_job()

        response = await async_client.post(f"/v1/jobs/{job.id}/retry")

        assert response.status_code == 409
        assert response.json()["error"]["message"] == (
            "Cannot retry job with status: pending"
        )

    async def test_retry_missing_job(self, async_client):
        response = await async_client.post(f"/v1/jobs/{uuid4()}/retry")
        assert response.status_code == 404

    async def test_recover_stale(self, async_client, insert_job):
        await insert_job(
            status=JobStatus.RUNNING.value,
            attempts=1,
            locked_by="dead-worker",
            locked_at=datetime.now(UTC) - timedelta(seconds=900),
        )

        response = await async_client.post("/v1/jobs/recover-stale")

        assert response.status_code == 200
        assert response.json()["data"]["recovered"] == 1

    async def test_list_plugin_jobs(self, async_client, queue, other_queue):
        for _ in range(3):
            await queue.enqueue(EnqueueJobOptions(type="a"))
        await other_queue.enqueue(EnqueueJobOptions(type="a"))

        response = await async_client.get("/v1/plugins/plugin-1/jobs", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["plugin_id"] == "plugin-1"
        assert data["count"] == 2
        assert all(job["plugin_id"] == "plugin-1" for job in data["jobs"])

    async def test_clear_plugin_jobs(self, async_client, insert_job, fetch_job):
        done = await insert_job(status=JobStatus.COMPLETED.value)
        failed = await insert_job(status=JobStatus.FAILED.value)

        response = await async_client.post(
            "/v1/plugins/plugin-1/jobs/clear", json={"statuses": ["completed", "failed"]}
        )

        assert response.status_code == 200
        assert response.json()["data"]["deleted"] == 2
        assert await fetch_job(done.id) is None
        assert await fetch_job(failed.id) is None

    async def test_clear_rejects_active_status(self, async_client):
        response = await async_client.post(
            "/v1/plugins/plugin-1/jobs/clear", json={"statuses": ["running"]}
        )
        assert response.status_code == 422


class TestAdminAuth:
    @pytest.fixture
    def token_settings(self, settings) -> Settings:
        return settings.model_copy(
            update={"auth_mode": AuthMode.TOKEN, "admin_api_token": "admin-token"}
        )

    @pytest.fixture
    async def token_client(self, token_settings, database):
        app = create_app(token_settings, database)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    async def test_token_required(self, token_client):
        response = await token_client.get("/v1/jobs/stats")
        assert response.status_code == 401

    async def test_wrong_token(self, token_client):
        response = await token_client.get(
            "/v1/jobs/stats", headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

    async def test_valid_token(self, token_client):
        response = await token_client.get(
            "/v1/jobs/stats", headers={"Authorization": "Bearer admin-token"}
        )
        assert response.status_code == 200

    async def test_dev_mode_requires_admin_role(self, settings, database):
        dev_settings = settings.model_copy(update={"auth_mode": AuthMode.DEV})
        app = create_app(dev_settings, database)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            forbidden = await client.get(
                "/v1/jobs/stats", headers={"X-User-ID": "u1", "X-User-Role": "reviewer"}
            )
            allowed = await client.get(
                "/v1/jobs/stats", headers={"X-User-ID": "u1", "X-User-Role": "admin"}
            )

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
