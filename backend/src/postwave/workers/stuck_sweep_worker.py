"""Periodic stuck-job sweep worker.

Runs the bucket reconciliation sweep on a fixed interval so jobs whose poll loop
is gone (or whose provider never reports done) still reach completed. Disabled
unless STUCK_SWEEP_INTERVAL_SECONDS is positive.
"""

import asyncio

import structlog

from postwave.core.config import Settings
from postwave.services.video.orchestrator import VideoOrchestrator

logger = structlog.get_logger()


async def run_stuck_sweep_worker(orchestrator: VideoOrchestrator, settings: Settings) -> None:
    """Main entry point for the stuck sweep worker.

    Worker lifecycle:
    - Started from the FastAPI lifespan when the sweep interval is positive
    - Runs until asyncio.CancelledError (app shutdown)

    Error handling:
    - Per-job storage errors are collected by the sweep itself
    - Anything else is logged and the loop continues after a short back-off

    Args:
        orchestrator: Video orchestrator shared with the API
        settings: Application settings (sweep interval)
    """
    interval = settings.stuck_sweep_interval_seconds

    logger.info("worker.started", worker="stuck_sweep_worker", interval=interval)

    try:
        while True:
            await asyncio.sleep(interval)

            try:
                result = await orchestrator.sweep_stuck_jobs()
                if result.reconciled or result.errors:
                    logger.info(
                        "stuck_sweep.pass_completed",
                        total=result.total,
                        reconciled=result.reconciled,
                        errors=len(result.errors),
                    )

            except asyncio.CancelledError:
                # Propagate cancellation for graceful shutdown
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="stuck_sweep_worker",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                # Back off 5 seconds before retrying
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="stuck_sweep_worker")
        raise
