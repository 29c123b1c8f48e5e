"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from postwave.api.rate_limit import limiter, rate_limits
from postwave.api.routes import videos
from postwave.core.config import Settings, configure_logging
from postwave.core.database import setup_db_session
from postwave.services.storage.object_storage import ObjectStorageClient
from postwave.services.synthesis.client import VideoSynthesisClient
from postwave.services.video.orchestrator import build_orchestrator
from postwave.uow import create_uow_factory
from postwave.workers.stuck_sweep_worker import run_stuck_sweep_worker

logger = structlog.get_logger()


def create_resilient_worker(coro_func, worker_name: str, shutdown_event: asyncio.Event):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Zero-argument worker coroutine function
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Cancelled outside shutdown (e.g. by a test): do not restart
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped cleanly (unexpected for infinite loop workers)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func())
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, build the database, synthesis and storage
      clients once, resume interrupted jobs, start the optional sweep worker
    - Shutdown: stop the sweep worker and cancel in-flight job tasks
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    synthesis = VideoSynthesisClient(
        model_url=settings.synthesis_endpoint,
        access_token=settings.synthesis_access_token,
        timeout=settings.synthesis_request_timeout_seconds,
    )
    storage = ObjectStorageClient(
        bucket=settings.storage_bucket,
        uri_scheme=settings.storage_uri_scheme,
        endpoint_url=settings.storage_endpoint_url,
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        region=settings.storage_region,
    )
    orchestrator = build_orchestrator(settings, uow_factory, synthesis, storage)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.orchestrator = orchestrator

    # Re-attach poll loops lost in the previous process before serving requests
    try:
        resumed = await orchestrator.resume_interrupted_jobs()
        logger.info("startup.recovery_completed", resumed=resumed)
    except Exception as e:
        # Log error but don't prevent startup; the sweep endpoint can be retried later
        logger.error(
            "startup.recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
            message="Job recovery failed during startup - API will still start",
        )

    shutdown_event = asyncio.Event()
    sweep_task = None
    if settings.stuck_sweep_interval_seconds > 0:
        sweep_task = create_resilient_worker(
            lambda: run_stuck_sweep_worker(orchestrator, settings),
            "stuck_sweep",
            shutdown_event,
        )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if sweep_task is not None:
        sweep_task.cancel()
        await asyncio.gather(sweep_task, return_exceptions=True)

    await orchestrator.shutdown()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Application settings (loaded from the environment when omitted)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Postwave Backend API",
        description="Video generation job orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Per-caller limits on job creation and uploads
    rate_limits.configure(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Videos router has prefix="/api/videos" in definition
    app.include_router(videos.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
