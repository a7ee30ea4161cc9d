"""
Job management API endpoints.

Admin endpoints for monitoring the backlog, re-enqueueing the work of dead
jobs and archiving old completed ones.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from labmatch.config.logging import get_logger
from labmatch.config.settings import Settings, SettingsDep
from labmatch.infra.database import get_session
from labmatch.v1.core.exceptions import NotFoundError, create_success_response
from labmatch.v1.infra.jobs.models import JobStatus
from labmatch.v1.infra.jobs.queue import JobQueue
from labmatch.v1.infra.jobs.schemas import (
    JobCleanupResponse,
    JobListResponse,
    JobResponse,
    JobRetryResponse,
)
from labmatch.v1.infra.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_queue(request: Request) -> JobQueue:
    """Queue built for this process at application startup."""
    return request.app.state.job_queue


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination, newest first."""

    job_service = JobService(settings)
    jobs, total = await job_service.list_jobs(
        session, status=status, job_type=type, limit=limit, offset=offset
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get job counts by status and type."""

    job_service = JobService(settings)
    stats = await job_service.get_job_stats(session)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job_service = JobService(settings)
    job = await job_service.get_job_by_id(session, job_id)

    if not job:
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    queue: JobQueue = Depends(get_job_queue),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue the work of a dead job again. The dead job itself is kept."""

    job_service = JobService(settings)
    new_job_id = await job_service.retry_job(session, queue, job_id)

    if new_job_id is None:
        raise NotFoundError(
            "Job not found or not eligible for retry", details={"job_id": str(job_id)}
        )

    logger.info("job_retried_via_api", job_id=str(job_id), new_job_id=new_job_id)

    return create_success_response(
        data=JobRetryResponse(job_id=str(job_id), new_job_id=new_job_id).model_dump()
    )


@router.post("/maintenance/cleanup", response_model=dict)
async def cleanup_jobs(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Archive completed jobs older than the retention window."""

    job_service = JobService(settings)
    deleted_count = await job_service.cleanup_old_jobs(session)

    response = JobCleanupResponse(
        deleted_count=deleted_count, retention_days=settings.job_retention_days
    )
    return create_success_response(data=response.model_dump())
