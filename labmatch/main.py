from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from labmatch.config.logging import get_logger, setup_logging
from labmatch.config.settings import JobBackend, settings
from labmatch.infra.database import get_database
from labmatch.v1.core.exceptions import (
    RequestContextMiddleware,
    register_exception_handlers,
)
from labmatch.v1.core.registries import job_queue_registry
from labmatch.v1.healthz import router as health_router
from labmatch.v1.infra.jobs.handlers import create_job_processor
from labmatch.v1.infra.jobs.registry_init import build_job_queue
from labmatch.v1.infra.jobs.routes import router as jobs_router
from labmatch.v1.infra.jobs.worker import build_worker_dependencies
from labmatch.v1.matching.eligibility import EligibilityEngine
from labmatch.v1.matching.routes import router as matching_router
from labmatch.v1.matching.triggers import MatchingTriggers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the job queue and matching triggers for this process."""
    database = get_database(settings)
    session_factory = database.SessionLocal

    queue = build_job_queue(settings, session_factory)
    app.state.job_queue = queue
    app.state.matching_triggers = MatchingTriggers(
        queue, EligibilityEngine(settings), session_factory
    )

    # A memory backlog is only visible here, so this process also works it
    if settings.job_backend == JobBackend.MEMORY:
        deps = build_worker_dependencies(settings, session_factory, queue)
        queue.start(create_job_processor(deps))
        logger.info("in_process_worker_started")

    try:
        yield
    finally:
        await queue.stop()
        await database.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    # Create FastAPI app with API versioning from day 1
    app = FastAPI(
        title=settings.app_name,
        description="Job scheduling and pair eligibility for researcher matching",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(matching_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        job_queue_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "labmatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
