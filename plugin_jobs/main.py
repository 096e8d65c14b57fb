from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from plugin_jobs.config.logging import get_logger, setup_logging
from plugin_jobs.config.settings import Settings, get_settings
from plugin_jobs.core.exceptions import (
    PluginJobsException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    plugin_jobs_exception_handler,
)
from plugin_jobs.healthz import router as health_router
from plugin_jobs.infra.database import Database
from plugin_jobs.jobs.cron import router as cron_router
from plugin_jobs.jobs.poller import JobPoller
from plugin_jobs.jobs.registry import JobHandlerRegistry
from plugin_jobs.jobs.routes import plugin_router, router as jobs_router
from plugin_jobs.jobs.service import JobService
from plugin_jobs.jobs.worker import JobWorker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    poller: JobPoller = app.state.poller

    # Never poll under test; tests drive the worker directly
    if settings.job_poller_enabled and settings.environment != "test":
        poller.start()
    else:
        logger.info(
            "Job poller not started",
            enabled=settings.job_poller_enabled,
            environment=settings.environment,
        )

    yield

    await poller.stop()
    await app.state.database.close()


def create_app(
    settings: Settings | None = None, database: Database | None = None
) -> FastAPI:
    """Create and configure the FastAPI application."""

    custom_settings = settings is not None
    settings = settings or get_settings()

    # Initialize structured logging
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Durable background jobs for conference plugins",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    if custom_settings:
        app.dependency_overrides[get_settings] = lambda: settings

    # Job system wiring, shared by the cron endpoint and the poller
    database = database or Database(settings)
    job_handlers = JobHandlerRegistry()
    job_worker = JobWorker(database.SessionLocal, job_handlers, settings)

    app.state.settings = settings
    app.state.database = database
    app.state.job_handlers = job_handlers
    app.state.job_worker = job_worker
    app.state.poller = JobPoller(
        job_worker, JobService(settings), database.SessionLocal, settings
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

    # Add exception handlers
    app.add_exception_handler(PluginJobsException, plugin_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(cron_router, prefix="/v1")
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(plugin_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "plugin_jobs.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
