"""
Scheduler contract shared by the in-memory and Postgres job queues.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from labmatch.v1.infra.jobs.models import EnqueueOptions, QueuedJob
from labmatch.v1.infra.jobs.payloads import JobPayload

JobHandler = Callable[[QueuedJob], Awaitable[None]]


class JobQueue(Protocol):
    """Protocol implemented by every job queue backend."""

    async def enqueue(
        self, payload: JobPayload, options: EnqueueOptions | None = None
    ) -> str:
        """
        Add a job to the backlog and return its id.

        When a pending or processing job with the same fingerprint exists,
        its id is returned instead and nothing new is stored.
        """
        ...

    def start(self, handler: JobHandler) -> None:
        """Begin processing with ``handler``. Repeated calls are no-ops."""
        ...

    async def stop(self) -> None:
        """Stop claiming new work and wait for in-flight jobs to finish."""
        ...

    async def get_job(self, job_id: str) -> QueuedJob | None:
        """Snapshot of a job, or None for unknown ids."""
        ...

    async def pending_count(self) -> int:
        """Number of jobs waiting in the backlog."""
        ...
