"""Submission: create the job record and hand the request to the synthesis provider."""

import time
from typing import Callable
from uuid import UUID

import structlog

from postwave.core.timezone import utcnow
from postwave.models.video_job import VideoJob, VideoJobStatus
from postwave.schemas.video import GenerationParameters, InputImage, VideoJobCreate
from postwave.services.exceptions import ServiceError
from postwave.services.synthesis.client import VideoSynthesisClient
from postwave.services.synthesis.request_builder import build_instances, build_parameters
from postwave.services.video.completion import CompletionHandler
from postwave.services.video.reconciliation import BucketReconciler

logger = structlog.get_logger(__name__)


class SubmissionService:
    """Creates pending jobs and submits them to the synthesis API."""

    def __init__(
        self,
        uow_factory: Callable,
        synthesis: VideoSynthesisClient,
        reconciler: BucketReconciler,
        completion: CompletionHandler,
    ):
        self.uow_factory = uow_factory
        self.synthesis = synthesis
        self.reconciler = reconciler
        self.completion = completion

    async def create_job(self, owner_id: str, request: VideoJobCreate) -> VideoJob:
        """Persist a new pending job from a validated request.

        Args:
            owner_id: Requesting user's identifier
            request: Validated generation request (preconditions already checked)

        Returns:
            The persisted pending job
        """
        job = VideoJob(
            owner_id=owner_id,
            title=request.title,
            description=request.description,
            tags=request.tags,
            video_type=request.video_type,
            prompt=request.prompt,
            input_image=(
                request.input_image.model_dump(mode="json") if request.input_image else None
            ),
            parameters=request.parameters.model_dump(mode="json"),
        )
        async with await self.uow_factory() as uow:
            await uow.videos.add(job)

        logger.info(
            "video.job.created",
            job_id=str(job.id),
            owner_id=owner_id,
            video_type=job.video_type.value,
        )
        return job

    async def submit(self, job_id: UUID) -> bool:
        """Submit a pending job to the provider.

        On success the job moves to processing with its operation handle and
        ``started_at`` recorded. Any transport or auth failure fails the job
        immediately; submissions are never retried.

        Returns:
            True if the job is now processing and should be polled
        """
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)

        if job is None:
            logger.info("video.submission.job_missing", job_id=str(job_id))
            return False
        if job.status != VideoJobStatus.PENDING:
            logger.warning(
                "video.submission.skipped", job_id=str(job_id), status=job.status.value
            )
            return False

        params = GenerationParameters.model_validate(job.parameters)
        input_image = InputImage.model_validate(job.input_image) if job.input_image else None
        instances = build_instances(job.prompt, input_image)
        parameters = build_parameters(params, self.reconciler.output_location_for(job.id))

        logger.info(
            "video.submission.started",
            job_id=str(job_id),
            video_type=job.video_type.value,
            prompt_preview=job.prompt[:100],
        )

        start_time = time.monotonic()
        # Bucket reconciliation only accepts outputs created at or after this instant
        started_at = utcnow()
        try:
            operation = await self.synthesis.submit(instances, parameters)
        except ServiceError as e:
            logger.error(
                "video.submission.failed",
                job_id=str(job_id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await self.completion.fail_if_still_processing(job_id, str(e))
            return False

        async with await self.uow_factory() as uow:
            updated = await uow.videos.update_status(
                job_id,
                VideoJobStatus.PROCESSING,
                operation=operation.model_dump(mode="json"),
                processing={"started_at": started_at},
            )

        if not updated:
            # Deleted while the request was in flight
            logger.info("video.submission.job_missing", job_id=str(job_id))
            return False

        logger.info(
            "video.submission.accepted",
            job_id=str(job_id),
            operation_name=operation.name,
            done=operation.done,
            duration_seconds=time.monotonic() - start_time,
        )
        return True
