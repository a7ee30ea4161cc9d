"""
Job service for inspecting and maintaining the durable backlog.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labmatch.config.logging import get_logger
from labmatch.config.settings import Settings
from labmatch.v1.infra.jobs.models import EnqueueOptions, Job, JobStatus
from labmatch.v1.infra.jobs.payloads import parse_payload
from labmatch.v1.infra.jobs.queue import JobQueue
from labmatch.v1.infra.jobs.schemas import JobStatsResponse

logger = get_logger(__name__)


class JobService:
    """Operator-facing queries and actions on the jobs table."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def list_jobs(
        self,
        session: AsyncSession,
        status: list[JobStatus] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first, with the total matching count."""
        base_query = select(Job)

        if status:
            base_query = base_query.where(Job.status.in_([s.value for s in status]))
        if job_type:
            base_query = base_query.where(Job.type == job_type)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await session.execute(count_query)).scalar() or 0

        jobs_query = (
            base_query.order_by(desc(Job.enqueued_at)).offset(offset).limit(limit)
        )
        jobs = (await session.execute(jobs_query)).scalars().all()

        return list(jobs), total

    async def get_job_by_id(self, session: AsyncSession, job_id: UUID) -> Job | None:
        result = await session.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one_or_none()

    async def get_job_stats(self, session: AsyncSession) -> JobStatsResponse:
        """Counts by status and type plus the live queue depth."""
        status_result = await session.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        by_status = {status: count for status, count in status_result.all()}

        type_result = await session.execute(
            select(Job.type, func.count(Job.id)).group_by(Job.type)
        )
        by_type = {job_type: count for job_type, count in type_result.all()}

        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.PROCESSING.value, 0
        )

        return JobStatsResponse(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            dead_jobs=by_status.get(JobStatus.DEAD.value, 0),
        )

    async def retry_job(
        self, session: AsyncSession, queue: JobQueue, job_id: UUID
    ) -> str | None:
        """
        Re-enqueue the payload of a dead job.

        The dead row stays dead. The payload goes through ``queue.enqueue``
        with the row's priority and attempt budget, so a live duplicate is
        returned instead of a second row.

        Returns:
            The id of the job now carrying the work, or None when ``job_id``
            is unknown or not dead
        """
        job = await self.get_job_by_id(session, job_id)
        if job is None or job.status != JobStatus.DEAD.value:
            return None

        new_job_id = await queue.enqueue(
            parse_payload(job.payload),
            EnqueueOptions(priority=job.priority, max_attempts=job.max_attempts),
        )
        logger.info("dead_job_requeued", job_id=str(job_id), new_job_id=new_job_id)
        return new_job_id

    async def cleanup_old_jobs(self, session: AsyncSession) -> int:
        """Archive completed jobs past the retention window. Dead jobs stay."""
        retention_days = self.settings.job_retention_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)

        result = await session.execute(
            delete(Job).where(
                and_(
                    Job.status == JobStatus.COMPLETED.value,
                    Job.completed_at < cutoff,
                )
            )
        )
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "jobs_archived",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )
        return deleted_count
