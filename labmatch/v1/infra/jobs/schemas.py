"""
Job system Pydantic schemas for the admin API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: dict[str, Any]
    status: str
    priority: int
    attempts: int
    max_attempts: int
    payload_hash: str | None = None
    last_error: str | None = None
    retry_after: datetime | None = None
    locked_by: str | None = None

    enqueued_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + processing
    dead_jobs: int


class JobCleanupResponse(BaseModel):
    """Schema for the archival endpoint."""

    deleted_count: int
    retention_days: int


class JobRetryResponse(BaseModel):
    """Schema for re-enqueueing a dead job."""

    job_id: str = Field(..., description="Dead job whose payload was re-enqueued")
    new_job_id: str = Field(
        ..., description="Job now carrying the work, an existing live duplicate if any"
    )


class MatchingTriggerResponse(BaseModel):
    """Schema for matching trigger endpoints."""

    enqueued: int = Field(..., description="Number of run_matching jobs enqueued")
    entity_id: str | None = None
