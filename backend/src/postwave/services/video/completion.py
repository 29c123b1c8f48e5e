"""Completion handler: the only place a video job reaches a terminal state.

Both completion-detection channels (operation polling and bucket reconciliation)
and the stuck-job sweep funnel into ``complete_if_still_processing``. The final
write is a conditional UPDATE on ``status = processing``, so whichever caller
gets there first wins and every later call is a silent no-op. Cleanup of the
transient input image only runs for the call that actually performed the
transition.
"""

import posixpath
from datetime import timedelta
from enum import Enum
from typing import Callable
from uuid import UUID

import structlog

from postwave.core.timezone import utcnow
from postwave.models.video_job import VideoJob, VideoJobStatus
from postwave.schemas.video import Artifact
from postwave.services.exceptions import PermanentError, ServiceError
from postwave.services.storage.object_storage import ObjectStorageClient

logger = structlog.get_logger(__name__)


class CompletionResult(str, Enum):
    """Outcome of a completion attempt."""

    COMPLETED = "completed"  # this call moved the job to completed
    FAILED = "failed"  # artifact could not be resolved; this call failed the job
    ALREADY_TERMINAL = "already_terminal"  # another caller finished the job first
    JOB_MISSING = "job_missing"  # job was deleted


class CompletionHandler:
    """Finalizes video jobs and keeps their signed URLs fresh."""

    def __init__(
        self,
        uow_factory: Callable,
        storage: ObjectStorageClient,
        signed_url_ttl_seconds: int = 7 * 24 * 3600,
    ):
        """Initialize completion handler.

        Args:
            uow_factory: UnitOfWork factory
            storage: Storage client used for metadata, signing and cleanup
            signed_url_ttl_seconds: Validity window of issued signed URLs
        """
        self.uow_factory = uow_factory
        self.storage = storage
        self.signed_url_ttl_seconds = signed_url_ttl_seconds

    async def build_artifact(self, location: str) -> Artifact:
        """Resolve metadata and a fresh signed URL for an output object.

        Raises:
            TransientError: Storage temporarily unavailable
            PermanentError: Object missing or outside the configured bucket
        """
        metadata = await self.storage.get_metadata(location)
        issued_at = utcnow()
        url = await self.storage.get_signed_read_url(location, self.signed_url_ttl_seconds)
        return Artifact(
            location=location,
            url=url,
            url_expiry=issued_at + timedelta(seconds=self.signed_url_ttl_seconds),
            size=metadata.size,
            content_type=metadata.content_type,
            filename=posixpath.basename(self.storage.key_for(location)),
        )

    async def complete_if_still_processing(
        self, job_id: UUID, location: str, source: str
    ) -> CompletionResult:
        """Record ``location`` as the job's artifact if the job is still processing.

        Args:
            job_id: Job to complete
            location: Storage URI of the generated video
            source: Which channel detected completion (for logs)

        Returns:
            CompletionResult describing what happened

        Raises:
            TransientError: Storage temporarily unavailable; nothing was written
        """
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)

        if job is None:
            logger.info("video.completion.job_missing", job_id=str(job_id), source=source)
            return CompletionResult.JOB_MISSING
        if job.status != VideoJobStatus.PROCESSING:
            logger.debug(
                "video.completion.noop", job_id=str(job_id), status=job.status.value, source=source
            )
            return CompletionResult.ALREADY_TERMINAL

        try:
            artifact = await self.build_artifact(location)
        except PermanentError as e:
            failed = await self.fail_if_still_processing(
                job_id, f"Failed to resolve generated video: {e}"
            )
            return CompletionResult.FAILED if failed else CompletionResult.ALREADY_TERMINAL

        async with await self.uow_factory() as uow:
            updated = await uow.videos.update_status(
                job_id,
                VideoJobStatus.COMPLETED,
                artifact=artifact.model_dump(mode="json"),
                processing={"completed_at": utcnow()},
            )

        if not updated:
            logger.debug("video.completion.noop", job_id=str(job_id), source=source)
            return CompletionResult.ALREADY_TERMINAL

        logger.info(
            "video.completion.succeeded",
            job_id=str(job_id),
            source=source,
            location=location,
            size=artifact.size,
        )

        await self._cleanup_input_image(job)
        return CompletionResult.COMPLETED

    async def fail_if_still_processing(
        self, job_id: UUID, error_message: str, operation: dict | None = None
    ) -> bool:
        """Mark a pending or processing job as failed.

        Args:
            job_id: Job to fail
            error_message: Message shown to the owner (truncated to 1000 characters)
            operation: Latest full operation payload to store alongside (optional)

        Returns:
            True if this call failed the job, False if it was already terminal or deleted
        """
        async with await self.uow_factory() as uow:
            updated = await uow.videos.update_status(
                job_id,
                VideoJobStatus.FAILED,
                operation=operation,
                processing={"error_message": error_message[:1000]},
            )

        if updated:
            logger.warning("video.job.failed", job_id=str(job_id), error_message=error_message)
        else:
            logger.debug("video.failure.noop", job_id=str(job_id))
        return updated

    async def refresh_url_if_expired(self, job: VideoJob) -> Artifact:
        """Return the job's artifact, re-signing and persisting it if the URL expired.

        Args:
            job: Completed job

        Raises:
            ValueError: If the job has no artifact
            TransientError / PermanentError: Storage errors while re-signing
        """
        if not job.artifact:
            raise ValueError(f"Job {job.id} has no artifact")

        artifact = Artifact.model_validate(job.artifact)
        if not artifact.is_url_expired(utcnow()):
            return artifact

        issued_at = utcnow()
        url = await self.storage.get_signed_read_url(
            artifact.location, self.signed_url_ttl_seconds
        )
        refreshed = artifact.model_copy(
            update={
                "url": url,
                "url_expiry": issued_at + timedelta(seconds=self.signed_url_ttl_seconds),
            }
        )

        async with await self.uow_factory() as uow:
            await uow.videos.refresh_artifact_url(job.id, refreshed.model_dump(mode="json"))

        logger.info("video.artifact.url_refreshed", job_id=str(job.id))
        return refreshed

    async def _cleanup_input_image(self, job: VideoJob) -> None:
        location = job.input_image_location
        if not location:
            return
        try:
            await self.storage.delete(location)
            logger.info("video.cleanup.input_deleted", job_id=str(job.id), location=location)
        except ServiceError as e:
            logger.warning(
                "video.cleanup.failed",
                job_id=str(job.id),
                location=location,
                error=str(e),
                error_type=type(e).__name__,
            )
