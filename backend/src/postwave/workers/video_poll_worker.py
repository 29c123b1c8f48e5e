"""Operation poller: drives one processing video job to a terminal state.

Each submitted job gets its own poll loop, run as a background task by
``JobTaskScheduler``. Every iteration:

1. Reloads the job. A deleted or no longer processing job ends the loop quietly.
2. Queries the provider operation. Transport and provider errors are transient:
   logged, counted in ``retry_count``, and retried on the next iteration.
3. ``done`` with an error fails the job with the provider's message.
4. ``done`` with output locations hands the first one to the completion handler.
5. Scans the bucket for the job's output regardless of what the provider said.
6. Sleeps for the poll interval without holding any lock or session.

When the attempt budget runs out the job fails with "Operation timed out".
All terminal writes go through ``CompletionHandler``; the loop never writes a
terminal status itself.
"""

import asyncio
from contextlib import AsyncExitStack
from typing import Awaitable, Callable
from uuid import UUID

import structlog

from postwave.models.video_job import VideoJobStatus
from postwave.schemas.video import OperationState
from postwave.services.exceptions import ServiceError, TransientError
from postwave.services.synthesis.client import VideoSynthesisClient
from postwave.services.video.completion import CompletionHandler
from postwave.services.video.reconciliation import BucketReconciler

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Operation timed out"
NO_OUTPUT_MESSAGE = "No video URI in response"


class OperationPoller:
    """Polls provider operations and the output bucket until jobs finish."""

    def __init__(
        self,
        uow_factory: Callable,
        synthesis: VideoSynthesisClient,
        reconciler: BucketReconciler,
        completion: CompletionHandler,
        poll_interval_seconds: float = 10.0,
        max_attempts: int = 60,
        concurrency: asyncio.Semaphore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize poller.

        Args:
            uow_factory: UnitOfWork factory
            synthesis: Synthesis API client
            reconciler: Bucket reconciliation fallback
            completion: Completion handler (sole writer of terminal states)
            poll_interval_seconds: Fixed delay between iterations
            max_attempts: Attempt budget per job
            concurrency: Caps how many iterations run their I/O at once across all
                jobs. Released before sleeping.
            sleep: Sleep function (tests substitute a no-op)
        """
        self.uow_factory = uow_factory
        self.synthesis = synthesis
        self.reconciler = reconciler
        self.completion = completion
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.concurrency = concurrency
        self.sleep = sleep

    async def poll_until_terminal(self, job_id: UUID) -> None:
        """Run the poll loop for one job until it finishes or the budget is spent."""
        logger.info(
            "video.poll.started",
            job_id=str(job_id),
            max_attempts=self.max_attempts,
            poll_interval=self.poll_interval_seconds,
        )

        for attempt in range(1, self.max_attempts + 1):
            async with AsyncExitStack() as stack:
                if self.concurrency is not None:
                    await stack.enter_async_context(self.concurrency)
                finished = await self.run_iteration(job_id, attempt)

            if finished:
                return

            if attempt < self.max_attempts:
                await self.sleep(self.poll_interval_seconds)

        logger.warning("video.poll.timed_out", job_id=str(job_id), attempts=self.max_attempts)
        await self.completion.fail_if_still_processing(job_id, TIMEOUT_MESSAGE)

    async def run_iteration(self, job_id: UUID, attempt: int) -> bool:
        """Run one poll iteration.

        Returns:
            True if polling should stop (job terminal, deleted, or handed off)
        """
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)

        if job is None:
            logger.info("video.poll.job_deleted", job_id=str(job_id), attempt=attempt)
            return True
        if job.status != VideoJobStatus.PROCESSING:
            logger.debug(
                "video.poll.job_not_processing", job_id=str(job_id), status=job.status.value
            )
            return True

        logger.debug("video.poll.attempt", job_id=str(job_id), attempt=attempt)

        provider_done_without_output = False
        operation = await self._query_operation(job_id, job.operation_name, attempt)
        if operation is not None:
            async with await self.uow_factory() as uow:
                still_processing = await uow.videos.update_status(
                    job_id,
                    VideoJobStatus.PROCESSING,
                    operation=operation.model_dump(mode="json"),
                )
            if not still_processing:
                return True

            if operation.failed:
                await self.completion.fail_if_still_processing(
                    job_id, operation.error_message, operation=operation.model_dump(mode="json")
                )
                return True

            if operation.done:
                locations = operation.output_locations()
                if locations:
                    return await self._complete(job_id, locations[0], source="operation")
                provider_done_without_output = True

        try:
            match = await self.reconciler.find_artifact(job)
        except ServiceError as e:
            logger.warning(
                "video.poll.bucket_scan_failed",
                job_id=str(job_id),
                attempt=attempt,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            match = None

        if match is not None:
            return await self._complete(job_id, match.location, source="bucket")

        if provider_done_without_output:
            await self.completion.fail_if_still_processing(job_id, NO_OUTPUT_MESSAGE)
            return True

        return False

    async def _query_operation(
        self, job_id: UUID, operation_name: str | None, attempt: int
    ) -> OperationState | None:
        if not operation_name:
            return None
        try:
            return await self.synthesis.poll_status(operation_name)
        except ServiceError as e:
            # Every poll failure counts against the shared attempt budget only
            log = logger.warning if isinstance(e, TransientError) else logger.error
            log(
                "video.poll.status_failed",
                job_id=str(job_id),
                attempt=attempt,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            async with await self.uow_factory() as uow:
                await uow.videos.increment_retry_count(job_id)
            return None

    async def _complete(self, job_id: UUID, location: str, source: str) -> bool:
        try:
            await self.completion.complete_if_still_processing(job_id, location, source=source)
        except TransientError as e:
            logger.warning(
                "video.poll.completion_deferred",
                job_id=str(job_id),
                source=source,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return False
        return True
