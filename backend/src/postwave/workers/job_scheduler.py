"""Background task registry for per-job orchestration.

Each video job's submit-then-poll sequence runs as one asyncio task keyed by job
id. The registry keeps at most one task per job, lets deletion cancel a job's
task, and cancels everything on shutdown.
"""

import asyncio
from typing import Awaitable, Callable
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


class JobTaskScheduler:
    """Runs and tracks one background task per job."""

    def __init__(self) -> None:
        self._tasks: dict[UUID, asyncio.Task] = {}

    def schedule(self, job_id: UUID, coro_func: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Start ``coro_func()`` as the job's task unless one is already running.

        Args:
            job_id: Job the task belongs to
            coro_func: Zero-argument coroutine function to run

        Returns:
            The job's (new or existing) task
        """
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(coro_func(), name=f"video-job-{job_id}")
        self._tasks[job_id] = task

        def on_task_done(finished: asyncio.Task) -> None:
            if self._tasks.get(job_id) is finished:
                del self._tasks[job_id]

            if finished.cancelled():
                logger.info("video.task.cancelled", job_id=str(job_id))
                return

            exc = finished.exception()
            if exc:
                logger.error(
                    "video.task.crashed",
                    job_id=str(job_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=exc,
                )

        task.add_done_callback(on_task_done)
        return task

    def is_running(self, job_id: UUID) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def cancel(self, job_id: UUID) -> bool:
        """Cancel a job's task.

        Returns:
            True if a running task was cancelled
        """
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def wait(self, job_id: UUID) -> None:
        """Wait for a job's task to finish (no-op if none is running)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def shutdown(self) -> None:
        """Cancel all running tasks and wait for them to finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("video.scheduler.stopped", cancelled=len(tasks))
