"""
Structured logging for the API and worker processes.

Every line carries the process kind (``api`` or ``worker``). Request ids,
worker ids and the job being executed are merged in from contextvars, so
log lines emitted deep inside a handler still identify their job.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from .settings import Settings, settings as default_settings

# Library loggers that are chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "asyncpg", "httpx")


def setup_logging(settings: Settings | None = None, process: str = "api") -> None:
    """Configure stdlib logging and structlog for one process."""
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    def add_process(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("process", process)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_process,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            # Tracebacks for logger.exception() calls
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
                if settings.debug
                else []
            ),
            (
                structlog.dev.ConsoleRenderer()
                if settings.debug
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_worker_context(worker_id: str, **context: Any) -> None:
    """Tag every log line emitted by a worker process with its id."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)


@contextmanager
def job_context(job_id: str, job_type: str, attempt: int) -> Iterator[None]:
    """
    Bind the executing job to log lines for the duration of the block.

    Each job runs in its own task, which owns a copy of the contextvars, so
    concurrent jobs never see each other's bindings.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job_id, job_type=job_type, attempt=attempt
    ):
        yield
