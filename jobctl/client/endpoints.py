"""API Endpoint Wrappers - Typed calls to the plugin job API"""

from typing import Any

from .base import APIClient, JobsAPIError
from ..utils.config_manager import config

__all__ = ["JobsAPIError", "PluginJobsClient"]


class PluginJobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = dict(headers or api_config.get("headers") or {})

        token = api_config.get("token")
        if token and "Authorization" not in final_headers:
            final_headers["Authorization"] = f"Bearer {token}"

        self.cron_secret = api_config.get("cron_secret")
        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Admin job endpoints
    def get_job_stats(self) -> dict[str, Any]:
        """Get job counts per status"""
        return self.api.get("/jobs/stats")

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get a job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Retry a failed job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def recover_stale_locks(self) -> dict[str, Any]:
        """Reclaim stale job leases"""
        return self.api.post("/jobs/recover-stale")

    def list_plugin_jobs(self, plugin_id: str, limit: int = 20) -> dict[str, Any]:
        """List recent jobs of a plugin"""
        return self.api.get(f"/plugins/{plugin_id}/jobs", {"limit": limit})

    def clear_plugin_jobs(
        self, plugin_id: str, statuses: list[str], type: str | None = None
    ) -> dict[str, Any]:
        """Delete finished jobs of a plugin"""
        data: dict[str, Any] = {"statuses": statuses}
        if type:
            data["type"] = type
        return self.api.post(f"/plugins/{plugin_id}/jobs/clear", data)

    # Cron endpoint
    def process_jobs(
        self,
        batch: int | None = None,
        catchup: bool = False,
        cleanup: bool = False,
        cleanup_days: int | None = None,
    ) -> dict[str, Any]:
        """Trigger a processing run through the cron endpoint"""
        if not self.cron_secret:
            raise JobsAPIError(
                "No cron secret configured, set it with: jobctl config set api.cron_secret <secret>"
            )

        params: dict[str, Any] = {
            "catchup": str(catchup).lower(),
            "cleanup": str(cleanup).lower(),
        }
        if batch:
            params["batch"] = batch
        if cleanup_days:
            params["cleanup_days"] = cleanup_days

        return self.api.post(
            "/cron/plugin-jobs",
            params=params,
            headers={"X-Cron-Secret": str(self.cron_secret)},
        )
