"""
Postgres-backed job queue shared by any number of worker processes.
"""

import asyncio
import dataclasses
import os
import socket
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labmatch.config.logging import get_logger, job_context
from labmatch.v1.core.exceptions import EnqueueError
from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.models import (
    DEFAULT_MAX_ATTEMPTS,
    EnqueueOptions,
    Job,
    JobStatus,
    QueuedJob,
    error_message,
)
from labmatch.v1.infra.jobs.payloads import (
    JobPayload,
    compute_payload_hash,
    dump_payload,
)
from labmatch.v1.infra.jobs.queue import JobHandler

logger = get_logger(__name__)

CLAIM_TIMEOUT_ERROR = "claim timed out"


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid."""
    return f"{socket.gethostname()}:{os.getpid()}"


def build_claim_statement(limit: int, worker_id: str):
    """
    Atomically claim up to ``limit`` ready jobs.

    A single ``UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP LOCKED)
    RETURNING`` statement: rows locked by another claimant are skipped, so
    two workers can never claim the same job.
    """
    ready = (
        select(Job.id)
        .where(
            and_(
                Job.status == JobStatus.PENDING.value,
                or_(Job.retry_after.is_(None), Job.retry_after <= func.now()),
            )
        )
        .order_by(Job.priority.desc(), Job.enqueued_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )

    return (
        update(Job)
        .where(Job.id.in_(ready))
        .values(
            status=JobStatus.PROCESSING.value,
            attempts=Job.attempts + 1,
            started_at=func.now(),
            locked_by=worker_id,
        )
        .returning(Job)
    )


class PostgresJobQueue:
    """
    Durable job queue over the ``jobs`` table.

    Features:
    - FOR UPDATE SKIP LOCKED claiming, the only cross-process coordination
    - Bounded per-process concurrency, claims request exactly the free slots
    - Exponential backoff with jitter for retries, dead-lettering afterwards
    - Optional reaper returning jobs orphaned by crashed workers
    - Graceful drain on stop, in-flight jobs are never interrupted
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int = 1,
        poll_interval_s: float = 2.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: BackoffPolicy | None = None,
        claim_timeout_s: int = 0,
        reaper_interval_s: float = 60.0,
        worker_id: str | None = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self._session_factory = session_factory
        self.concurrency = concurrency
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self.backoff = backoff or BackoffPolicy()
        self.claim_timeout_s = claim_timeout_s
        self.reaper_interval_s = reaper_interval_s
        self.worker_id = worker_id or generate_worker_id()

        self._handler: JobHandler | None = None
        self._running = False
        self._wake = asyncio.Event()
        self._poll_task: asyncio.Task | None = None
        self._reaper_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def free_slots(self) -> int:
        return max(0, self.concurrency - len(self._in_flight))

    async def enqueue(
        self, payload: JobPayload, options: EnqueueOptions | None = None
    ) -> str:
        """
        Persist a job, or return the id of a live duplicate.

        The duplicate check and the insert are separate statements. Two
        processes racing on the same fingerprint can both insert; handlers
        are idempotent so the extra run is harmless.
        """
        options = options or EnqueueOptions()
        max_attempts = (
            self.max_attempts if options.max_attempts is None else options.max_attempts
        )
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        payload_hash = compute_payload_hash(payload)

        try:
            async with self._session_factory() as session:
                if payload_hash is not None:
                    existing_id = await session.scalar(
                        select(Job.id)
                        .where(
                            Job.payload_hash == payload_hash,
                            Job.status.in_(
                                [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
                            ),
                        )
                        .limit(1)
                    )
                    if existing_id is not None:
                        logger.debug(
                            "job_deduplicated",
                            job_id=str(existing_id),
                            job_type=payload.type,
                        )
                        return str(existing_id)

                job_id = uuid4()
                job = Job(
                    id=job_id,
                    type=payload.type,
                    payload=dump_payload(payload),
                    status=JobStatus.PENDING.value,
                    priority=int(options.priority),
                    attempts=0,
                    max_attempts=max_attempts,
                    payload_hash=payload_hash,
                )
                session.add(job)
                await session.commit()
        except Exception as exc:
            raise EnqueueError(
                f"Failed to enqueue {payload.type} job: {error_message(exc)}",
                details={"type": payload.type},
            ) from exc

        logger.info(
            "job_enqueued",
            job_id=str(job_id),
            job_type=payload.type,
            priority=int(options.priority),
        )

        if self._running:
            self._wake.set()

        return str(job_id)

    def start(self, handler: JobHandler) -> None:
        if self._running:
            return

        self._handler = handler
        self._running = True
        self._wake.clear()
        self._poll_task = asyncio.create_task(self._poll_loop())
        if self.claim_timeout_s > 0:
            self._reaper_task = asyncio.create_task(self._reaper_loop())

        logger.info(
            "job_queue_started",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
            poll_interval_s=self.poll_interval_s,
        )

    async def stop(self) -> None:
        self._running = False
        self._wake.set()

        # Finish the current claim cycle instead of cancelling it mid-transaction
        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None

        if self._reaper_task is not None:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        if self._in_flight:
            logger.info(
                "job_queue_draining",
                worker_id=self.worker_id,
                in_flight=len(self._in_flight),
            )
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        self._handler = None
        logger.info("job_queue_stopped", worker_id=self.worker_id)

    async def get_job(self, job_id: str) -> QueuedJob | None:
        try:
            key = UUID(job_id)
        except ValueError:
            return None

        async with self._session_factory() as session:
            row = await session.get(Job, key)
            return row.to_queued_job() if row is not None else None

    async def pending_count(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count(Job.id)).where(Job.status == JobStatus.PENDING.value)
            )
            return count or 0

    async def claim_and_dispatch(self) -> int:
        """Run one claim cycle and start the claimed jobs. Returns the claim count."""
        handler = self._handler
        slots = self.free_slots
        if handler is None or slots == 0:
            return 0

        jobs = await self._claim(slots)
        for job in jobs:
            task = asyncio.create_task(self._execute(job, handler))
            self._in_flight.add(task)
            task.add_done_callback(self._on_job_done)

        return len(jobs)

    async def reap_stale(self) -> int:
        """
        Return jobs stuck in ``processing`` past the claim timeout.

        Jobs with attempts left go back to ``pending``; exhausted jobs are
        dead-lettered.
        """
        if self.claim_timeout_s <= 0:
            return 0

        cutoff = datetime.now(UTC) - timedelta(seconds=self.claim_timeout_s)
        stale = and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.started_at < cutoff,
        )

        async with self._session_factory() as session:
            requeued = await session.execute(
                update(Job)
                .where(stale, Job.attempts < Job.max_attempts)
                .values(
                    status=JobStatus.PENDING.value,
                    locked_by=None,
                    retry_after=None,
                    last_error=CLAIM_TIMEOUT_ERROR,
                )
                .execution_options(synchronize_session=False)
            )
            dead = await session.execute(
                update(Job)
                .where(stale, Job.attempts >= Job.max_attempts)
                .values(
                    status=JobStatus.DEAD.value,
                    locked_by=None,
                    last_error=CLAIM_TIMEOUT_ERROR,
                    completed_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        reaped = (requeued.rowcount or 0) + (dead.rowcount or 0)
        if reaped:
            logger.warning(
                "stale_jobs_reaped",
                requeued=requeued.rowcount,
                dead_lettered=dead.rowcount,
                claim_timeout_s=self.claim_timeout_s,
            )
        return reaped

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.claim_and_dispatch()
            except Exception:
                # Storage hiccups must not kill the worker, next tick retries
                logger.exception("claim_cycle_failed", worker_id=self.worker_id)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_s)
            except TimeoutError:
                pass
            self._wake.clear()

    async def _reaper_loop(self) -> None:
        while self._running:
            try:
                await self.reap_stale()
            except Exception:
                logger.exception("stale_job_reaper_failed", worker_id=self.worker_id)
            await asyncio.sleep(self.reaper_interval_s)

    async def _claim(self, limit: int) -> list[QueuedJob]:
        async with self._session_factory() as session:
            result = await session.scalars(build_claim_statement(limit, self.worker_id))
            claimed = [row.to_queued_job() for row in result.all()]
            await session.commit()

        jobs = sorted(
            claimed,
            key=lambda job: (-job.priority, job.enqueued_at),
        )
        if jobs:
            logger.info(
                "jobs_claimed",
                worker_id=self.worker_id,
                job_count=len(jobs),
                job_ids=[job.id for job in jobs],
            )
        return jobs

    def _on_job_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if self._running:
            self._wake.set()

    async def _execute(self, job: QueuedJob, handler: JobHandler) -> None:
        log = logger.bind(job_id=job.id, job_type=job.type, attempt=job.attempts)

        try:
            with job_context(job.id, job.type, job.attempts):
                await handler(dataclasses.replace(job))
        except Exception as exc:
            await self._record_failure(job, error_message(exc), log)
            return

        try:
            await self._mark_completed(job.id)
        except Exception:
            log.exception("job_completion_not_persisted")
            return
        log.info("job_completed")

    async def _record_failure(self, job: QueuedJob, error: str, log) -> None:
        try:
            if job.attempts < job.max_attempts:
                retry_after = self.backoff.retry_after(job.attempts)
                await self._schedule_retry(job.id, error, retry_after)
                log.warning(
                    "job_retry_scheduled",
                    max_attempts=job.max_attempts,
                    retry_after=retry_after.isoformat() if retry_after else None,
                    error=error,
                )
            else:
                await self._mark_dead(job.id, error)
                log.error(
                    "job_dead_lettered", max_attempts=job.max_attempts, error=error
                )
        except Exception:
            # Left in processing; the claim-timeout reaper recovers it
            log.exception("job_failure_not_persisted", error=error)

    async def _mark_completed(self, job_id: str) -> None:
        await self._update(
            job_id,
            status=JobStatus.COMPLETED.value,
            locked_by=None,
            completed_at=datetime.now(UTC),
        )

    async def _schedule_retry(
        self, job_id: str, error: str, retry_after: datetime | None
    ) -> None:
        await self._update(
            job_id,
            status=JobStatus.PENDING.value,
            locked_by=None,
            last_error=error,
            retry_after=retry_after,
        )

    async def _mark_dead(self, job_id: str, error: str) -> None:
        await self._update(
            job_id,
            status=JobStatus.DEAD.value,
            locked_by=None,
            last_error=error,
            completed_at=datetime.now(UTC),
        )

    async def _update(self, job_id: str, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Job)
                .where(Job.id == UUID(job_id))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
