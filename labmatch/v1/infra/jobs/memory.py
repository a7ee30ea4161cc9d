"""
In-process job queue for single-process deployments and tests.
"""

import asyncio
import dataclasses
import uuid
from datetime import UTC, datetime

from labmatch.config.logging import get_logger, job_context
from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.models import (
    DEFAULT_MAX_ATTEMPTS,
    EnqueueOptions,
    JobStatus,
    QueuedJob,
    error_message,
)
from labmatch.v1.infra.jobs.payloads import JobPayload, compute_payload_hash
from labmatch.v1.infra.jobs.queue import JobHandler

logger = get_logger(__name__)


class InMemoryJobQueue:
    """
    Priority job queue living in the current event loop.

    Jobs run one at a time. The next job is picked as soon as the previous
    one finishes, on enqueue while idle, and on every poll tick (which is
    what wakes up jobs waiting out a retry backoff).

    Nothing is shared with other processes; use ``PostgresJobQueue`` when
    the app and its workers run separately.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval_s: float = 1.0,
        backoff: BackoffPolicy | None = None,
    ):
        self.max_attempts = max_attempts
        self.poll_interval_s = poll_interval_s
        self.backoff = backoff or BackoffPolicy()

        self._backlog: list[QueuedJob] = []
        self._jobs: dict[str, QueuedJob] = {}
        self._handler: JobHandler | None = None
        self._running = False
        self._wake = asyncio.Event()
        self._poll_task: asyncio.Task | None = None
        self._active: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def enqueue(
        self, payload: JobPayload, options: EnqueueOptions | None = None
    ) -> str:
        options = options or EnqueueOptions()
        max_attempts = (
            self.max_attempts if options.max_attempts is None else options.max_attempts
        )
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        payload_hash = compute_payload_hash(payload)
        if payload_hash is not None:
            for existing in self._jobs.values():
                if existing.payload_hash == payload_hash and existing.is_active():
                    logger.debug(
                        "job_deduplicated", job_id=existing.id, job_type=payload.type
                    )
                    return existing.id

        job = QueuedJob(
            id=str(uuid.uuid4()),
            payload=payload,
            max_attempts=max_attempts,
            priority=int(options.priority),
            payload_hash=payload_hash,
        )
        self._backlog.append(job)
        self._jobs[job.id] = job
        logger.debug(
            "job_enqueued", job_id=job.id, job_type=payload.type, priority=job.priority
        )

        if self._running and self._active is None:
            self._process_next()

        return job.id

    def start(self, handler: JobHandler) -> None:
        if self._running:
            return

        self._handler = handler
        self._running = True
        self._wake.clear()
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._process_next()

    async def stop(self) -> None:
        self._running = False
        self._wake.set()

        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None

        # Let the current job finish, it is never interrupted
        active = self._active
        if active is not None:
            await active

        self._handler = None

    async def get_job(self, job_id: str) -> QueuedJob | None:
        job = self._jobs.get(job_id)
        return dataclasses.replace(job) if job is not None else None

    async def pending_count(self) -> int:
        return len(self._backlog)

    async def wait_for_idle(self, tick_s: float = 0.005) -> None:
        """Wait until the backlog is drained and nothing is executing."""
        while self._active is not None or (self._running and self._backlog):
            active = self._active
            if active is not None and not active.done():
                await asyncio.shield(active)
            else:
                await asyncio.sleep(tick_s)

    async def _poll_loop(self) -> None:
        while self._running:
            if self._active is None:
                self._process_next()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_s)
            except TimeoutError:
                pass
            self._wake.clear()

    def _select_next(self, now: datetime) -> QueuedJob | None:
        """Highest priority ready job, earliest enqueue time on ties."""
        best: QueuedJob | None = None
        for job in self._backlog:
            if not job.is_ready(now):
                continue
            if (
                best is None
                or job.priority > best.priority
                or (job.priority == best.priority and job.enqueued_at < best.enqueued_at)
            ):
                best = job
        return best

    def _process_next(self) -> None:
        if not self._running or self._handler is None or self._active is not None:
            return

        now = datetime.now(UTC)
        job = self._select_next(now)
        if job is None:
            return

        self._backlog.remove(job)
        job.status = JobStatus.PROCESSING
        job.attempts += 1
        job.started_at = now

        self._active = asyncio.create_task(self._execute(job, self._handler))
        self._active.add_done_callback(self._on_job_done)

    def _on_job_done(self, task: asyncio.Task) -> None:
        self._active = None
        if self._running:
            self._process_next()

    async def _execute(self, job: QueuedJob, handler: JobHandler) -> None:
        log = logger.bind(job_id=job.id, job_type=job.type, attempt=job.attempts)

        try:
            with job_context(job.id, job.type, job.attempts):
                await handler(dataclasses.replace(job))
        except Exception as exc:
            job.last_error = error_message(exc)

            if job.attempts < job.max_attempts:
                job.retry_after = self.backoff.retry_after(job.attempts)
                job.status = JobStatus.PENDING
                self._backlog.append(job)
                log.warning(
                    "job_retry_scheduled",
                    max_attempts=job.max_attempts,
                    retry_after=job.retry_after.isoformat() if job.retry_after else None,
                    error=job.last_error,
                )
            else:
                job.status = JobStatus.DEAD
                job.completed_at = datetime.now(UTC)
                log.error(
                    "job_dead_lettered",
                    max_attempts=job.max_attempts,
                    error=job.last_error,
                )
            return

        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now(UTC)
        log.debug("job_completed")
