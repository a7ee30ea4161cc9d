"""API Endpoint Wrappers - Typed admin API calls"""

from typing import Any

from .base import APIClient, LabMatchError
from ..utils.config_manager import config

__all__ = ["LabMatchClient", "LabMatchError"]


class LabMatchClient:
    """High-level client with typed endpoint methods"""

    def __init__(self, base_url: str | None = None):
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")

        self.api = APIClient(
            base_url=final_base_url,
            timeout=api_config.get("timeout", 30),
            headers=api_config.get("headers", {}),
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

    # Jobs Endpoints
    def list_jobs(
        self,
        status: list[str] | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def get_job_stats(self) -> dict[str, Any]:
        """Get job counts by status and type"""
        return self.api.get("/jobs/stats/overview")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Re-enqueue the work of a dead job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def cleanup_jobs(self) -> dict[str, Any]:
        """Archive old completed jobs"""
        return self.api.post("/jobs/maintenance/cleanup")

    # Matching Endpoints
    def trigger_scan(self) -> dict[str, Any]:
        """Enqueue every eligible pair"""
        return self.api.post("/matching/scan")

    def refresh_entity(self, entity_id: str) -> dict[str, Any]:
        """Re-evaluate every eligible pair touching one researcher"""
        return self.api.post(f"/matching/entities/{entity_id}/refresh")
