from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from labmatch.config.logging import get_logger
from labmatch.config.settings import JobBackend, Settings, SettingsDep
from labmatch.infra.database import get_session
from labmatch.v1.core.exceptions import create_success_response
from labmatch.v1.infra.jobs.models import Job, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Backlog status as seen from the jobs table."""

    backend: str
    active_workers: int = 0
    queue_depth: int = 0
    dead_jobs: int = 0
    stale_claims: int | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check with database connectivity and backlog status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)
    overall_ok = db_health.connected

    queue_health = QueueHealth(backend=settings.job_backend.value)
    if db_health.connected and settings.job_backend == JobBackend.POSTGRES:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception:
            # Backlog stats are informational, they never fail the check
            logger.exception("queue_health_check_failed")

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump(),
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


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Summarize the shared backlog."""

    active_workers_result = await session.execute(
        select(func.count(func.distinct(Job.locked_by))).where(
            Job.status == JobStatus.PROCESSING.value
        )
    )
    active_workers = active_workers_result.scalar() or 0

    status_result = await session.execute(
        select(Job.status, func.count(Job.id)).group_by(Job.status)
    )
    by_status = {status: count for status, count in status_result.all()}

    stale_claims = None
    if settings.job_claim_timeout_s > 0:
        cutoff = datetime.now(UTC) - timedelta(seconds=settings.job_claim_timeout_s)
        stale_result = await session.execute(
            select(func.count(Job.id)).where(
                Job.status == JobStatus.PROCESSING.value, Job.started_at < cutoff
            )
        )
        stale_claims = stale_result.scalar() or 0

    return QueueHealth(
        backend=settings.job_backend.value,
        active_workers=active_workers,
        queue_depth=by_status.get(JobStatus.PENDING.value, 0)
        + by_status.get(JobStatus.PROCESSING.value, 0),
        dead_jobs=by_status.get(JobStatus.DEAD.value, 0),
        stale_claims=stale_claims,
    )
