"""
Job queue backends.

Both backends register themselves with the queue registry on import; the
process wiring (API lifespan, worker entry point) picks one by name.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labmatch.config.settings import Settings
from labmatch.v1.core.registries import job_queue_registry
from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.memory import InMemoryJobQueue
from labmatch.v1.infra.jobs.postgres import PostgresJobQueue
from labmatch.v1.infra.jobs.queue import JobQueue


def backoff_from_settings(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        base_delay_ms=settings.job_backoff_base_ms,
        max_delay_ms=settings.job_backoff_max_ms,
    )


@job_queue_registry.register("memory")
def build_memory_queue(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None
) -> InMemoryJobQueue:
    return InMemoryJobQueue(
        max_attempts=settings.job_max_attempts,
        poll_interval_s=settings.job_poll_interval_ms / 1000,
        backoff=backoff_from_settings(settings),
    )


@job_queue_registry.register("postgres")
def build_postgres_queue(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None
) -> PostgresJobQueue:
    if session_factory is None:
        raise ValueError("The postgres job queue needs a database session factory")

    return PostgresJobQueue(
        session_factory,
        concurrency=settings.job_concurrency,
        poll_interval_s=settings.job_poll_interval_ms / 1000,
        max_attempts=settings.job_max_attempts,
        backoff=backoff_from_settings(settings),
        claim_timeout_s=settings.job_claim_timeout_s,
        reaper_interval_s=settings.job_reaper_interval_s,
    )


def build_job_queue(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> JobQueue:
    """Build the queue backend named by ``settings.job_backend``."""
    factory = job_queue_registry.get(settings.job_backend.value)
    return factory(settings, session_factory)
