"""
Worker process: builds the configured job queue, starts it with the job
processor and drains it on SIGTERM/SIGINT.
"""

import asyncio
import importlib
import signal
from dataclasses import replace
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labmatch.config.logging import bind_worker_context, get_logger
from labmatch.config.settings import Settings
from labmatch.v1.infra.jobs.handlers import (
    COLLABORATOR_FIELDS,
    WorkerDependencies,
    create_job_processor,
)
from labmatch.v1.infra.jobs.postgres import generate_worker_id
from labmatch.v1.infra.jobs.queue import JobQueue
from labmatch.v1.infra.jobs.registry_init import build_job_queue
from labmatch.v1.matching.eligibility import EligibilityEngine
from labmatch.v1.matching.triggers import MatchingTriggers

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def load_collaborators(dotted_path: str, settings: Settings) -> dict[str, Any]:
    """
    Call the ``module:factory`` named in settings and return its collaborators.

    The factory receives the settings and returns a mapping whose keys are
    a subset of ``COLLABORATOR_FIELDS``.
    """
    module_name, sep, attr = dotted_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"WORKER_DEPENDENCIES must look like 'module:factory', got {dotted_path!r}"
        )

    factory = getattr(importlib.import_module(module_name), attr)
    collaborators = dict(factory(settings))

    unknown = set(collaborators) - set(COLLABORATOR_FIELDS)
    if unknown:
        raise ValueError(f"Unknown worker collaborators: {sorted(unknown)}")
    return collaborators


def build_worker_dependencies(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    queue: JobQueue,
) -> WorkerDependencies:
    engine = EligibilityEngine(settings)
    deps = WorkerDependencies(
        session_factory=session_factory,
        eligibility=engine,
        triggers=MatchingTriggers(queue, engine, session_factory),
    )
    if settings.worker_dependencies:
        deps = replace(deps, **load_collaborators(settings.worker_dependencies, settings))
    return deps


async def run_worker(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    queue: JobQueue | None = None,
    stop_event: asyncio.Event | None = None,
) -> int:
    """
    Run until a shutdown signal arrives (or ``stop_event`` is set).

    The queue stops claiming, in-flight jobs finish, then 0 is returned.
    """
    worker_id = generate_worker_id()
    bind_worker_context(worker_id, backend=settings.job_backend.value)

    queue = queue or build_job_queue(settings, session_factory)
    deps = build_worker_dependencies(settings, session_factory, queue)
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _request_stop, stop_event, sig)

    queue.start(create_job_processor(deps))
    logger.info(
        "worker_started",
        concurrency=settings.job_concurrency,
        poll_interval_ms=settings.job_poll_interval_ms,
    )

    try:
        await stop_event.wait()
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    await queue.stop()
    logger.info("worker_stopped")
    return 0


def _request_stop(stop_event: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("worker_shutdown_requested", signal=sig.name)
    stop_event.set()
