"""Stuck-job recovery: reconcile processing jobs against the output bucket.

Covers jobs whose poll loop is no longer running (process restart, crash) or
whose provider never reported completion. Available as a batch sweep over all
processing jobs and as a single-job "force completion check".
"""

from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

import structlog

from postwave.models.video_job import VideoJob, VideoJobStatus
from postwave.services.exceptions import JobNotFoundError, ServiceError
from postwave.services.video.completion import CompletionHandler, CompletionResult
from postwave.services.video.reconciliation import BucketReconciler

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """Result of a stuck-job sweep."""

    total: int  # Jobs in processing when the sweep started
    reconciled: int  # Jobs this sweep moved to completed
    errors: list[str] = field(default_factory=list)  # Non-fatal per-job errors


class StuckJobRecovery:
    """Runs the bucket fallback outside of any poll loop."""

    def __init__(
        self,
        uow_factory: Callable,
        reconciler: BucketReconciler,
        completion: CompletionHandler,
        batch_size: int = 100,
    ):
        self.uow_factory = uow_factory
        self.reconciler = reconciler
        self.completion = completion
        self.batch_size = batch_size

    async def reconcile_job(self, job: VideoJob) -> CompletionResult | None:
        """Look for ``job``'s artifact in the bucket and complete the job on a match.

        Returns:
            CompletionResult if an artifact was found, None otherwise

        Raises:
            ServiceError: Storage errors from the scan or completion
        """
        match = await self.reconciler.find_artifact(job)
        if match is None:
            return None
        return await self.completion.complete_if_still_processing(
            job.id, match.location, source="recovery"
        )

    async def force_completion_check(self, job_id: UUID) -> VideoJobStatus:
        """Run a completion check for one job and return its resulting status.

        Raises:
            JobNotFoundError: If the job does not exist
            ServiceError: Storage errors from the scan or completion
        """
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Video job {job_id} not found")

        if job.status == VideoJobStatus.PROCESSING:
            result = await self.reconcile_job(job)
            logger.info(
                "video.recovery.force_check",
                job_id=str(job_id),
                result=result.value if result else "no_match",
            )

        async with await self.uow_factory() as uow:
            refreshed = await uow.videos.get_by_id(job_id)
        if refreshed is None:
            raise JobNotFoundError(f"Video job {job_id} not found")
        return refreshed.status

    async def sweep(self) -> SweepResult:
        """Reconcile every job currently in processing.

        Jobs are processed one at a time; a storage error on one job is recorded
        and the sweep continues with the next.
        """
        jobs: list[VideoJob] = []
        offset = 0
        async with await self.uow_factory() as uow:
            while True:
                batch = await uow.videos.get_by_status(
                    VideoJobStatus.PROCESSING, limit=self.batch_size, offset=offset
                )
                jobs.extend(batch)
                if len(batch) < self.batch_size:
                    break
                offset += self.batch_size

        result = SweepResult(total=len(jobs), reconciled=0)
        for job in jobs:
            try:
                outcome = await self.reconcile_job(job)
            except ServiceError as e:
                logger.warning(
                    "video.recovery.job_failed",
                    job_id=str(job.id),
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                result.errors.append(f"{job.id}: {e}")
                continue
            if outcome == CompletionResult.COMPLETED:
                result.reconciled += 1

        logger.info(
            "video.recovery.sweep_completed",
            total=result.total,
            reconciled=result.reconciled,
            errors=len(result.errors),
        )
        return result
