"""Video generation orchestrator: the service surface used by routes and the CLI.

The orchestrator owns no global state. The synthesis and storage clients are
built once at process start and injected, so tests can pass in fakes.
"""

import asyncio
import mimetypes
import posixpath
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable
from uuid import UUID

import structlog

from postwave.core.config import Settings
from postwave.core.timezone import utcnow
from postwave.models.video_job import VideoJob, VideoJobStatus, VideoType
from postwave.schemas.video import ALLOWED_IMAGE_TYPES, Artifact, InputImage, VideoJobCreate
from postwave.services.exceptions import (
    ArtifactNotReadyError,
    JobAccessDeniedError,
    JobNotFoundError,
    PreconditionError,
    ServiceError,
    StorageObjectNotFoundError,
)
from postwave.services.storage.object_storage import ObjectStorageClient
from postwave.services.synthesis.client import VideoSynthesisClient
from postwave.services.video.completion import CompletionHandler
from postwave.services.video.reconciliation import BucketReconciler
from postwave.services.video.recovery import StuckJobRecovery, SweepResult
from postwave.services.video.submission import SubmissionService
from postwave.workers.job_scheduler import JobTaskScheduler
from postwave.workers.video_poll_worker import OperationPoller

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Submission interrupted before the request was accepted"


@dataclass
class JobPage:
    """One page of an owner's jobs."""

    jobs: list[VideoJob]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class VideoOrchestrator:
    """Coordinates submission, polling, completion and recovery of video jobs."""

    def __init__(
        self,
        uow_factory: Callable,
        storage: ObjectStorageClient,
        submission: SubmissionService,
        poller: OperationPoller,
        completion: CompletionHandler,
        recovery: StuckJobRecovery,
        scheduler: JobTaskScheduler,
        input_image_prefix: str = "input-images/",
        max_input_image_bytes: int = 10 * 1024 * 1024,
        pending_grace_seconds: float = 90.0,
    ):
        self.uow_factory = uow_factory
        self.storage = storage
        self.submission = submission
        self.poller = poller
        self.completion = completion
        self.recovery = recovery
        self.scheduler = scheduler
        self.input_image_prefix = input_image_prefix
        self.max_input_image_bytes = max_input_image_bytes
        self.pending_grace_seconds = pending_grace_seconds

    # Submission

    async def upload_input_image(
        self, owner_id: str, data: bytes, filename: str, content_type: str | None
    ) -> InputImage:
        """Store a conditioning image for a later image-to-video job.

        Raises:
            PreconditionError: Empty, oversized or non-image upload
        """
        media_type = content_type or mimetypes.guess_type(filename)[0] or ""
        if media_type not in ALLOWED_IMAGE_TYPES:
            raise PreconditionError("Only JPEG, PNG and GIF images are allowed")
        if not data:
            raise PreconditionError("Uploaded image is empty")
        if len(data) > self.max_input_image_bytes:
            raise PreconditionError(
                f"Image exceeds maximum size of {self.max_input_image_bytes} bytes"
            )

        extension = posixpath.splitext(filename)[1].lower() or (
            mimetypes.guess_extension(media_type) or ""
        )
        stamp = int(time.time() * 1000)
        key = f"{self.input_image_prefix}{owner_id}/{stamp}-{uuid.uuid4().hex}{extension}"
        location = await self.storage.upload(data, key, media_type)
        return InputImage(location=location, media_type=media_type)

    async def create_job(self, owner_id: str, request: VideoJobCreate) -> VideoJob:
        """Create a pending job and start its orchestration in the background.

        The returned job is still pending; callers follow progress via ``get_status``.

        Raises:
            PreconditionError: Input image was not uploaded by this owner
        """
        if request.input_image is not None:
            await self._check_input_image(owner_id, request.input_image)

        job = await self.submission.create_job(owner_id, request)
        self.scheduler.schedule(job.id, lambda: self._run_job(job.id))
        return job

    async def _check_input_image(self, owner_id: str, image: InputImage) -> None:
        """Accept only images this owner stored through ``upload_input_image``.

        The location is later deleted on completion or job deletion, so it must
        never point outside the owner's upload prefix.
        """
        owner_prefix = self.storage.location_for(f"{self.input_image_prefix}{owner_id}/")
        relative = image.location[len(owner_prefix) :]
        if (
            not image.location.startswith(owner_prefix)
            or not relative
            or ".." in relative.split("/")
        ):
            raise PreconditionError("Input image must be uploaded via /api/videos/input-images")

        try:
            await self.storage.get_metadata(image.location)
        except StorageObjectNotFoundError:
            raise PreconditionError("Input image not found; upload it again") from None

    async def _run_job(self, job_id: UUID) -> None:
        if await self.submission.submit(job_id):
            await self.poller.poll_until_terminal(job_id)

    # Reads

    async def get_job(self, job_id: UUID, owner_id: str) -> VideoJob:
        """Load a job the caller owns.

        Raises:
            JobNotFoundError: No such job
            JobAccessDeniedError: Job belongs to another owner
        """
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Video job {job_id} not found")
        if job.owner_id != owner_id:
            raise JobAccessDeniedError("Access denied")
        return job

    async def get_status(self, job_id: UUID, owner_id: str) -> VideoJob:
        job = await self.get_job(job_id, owner_id)
        return await self._with_fresh_url(job)

    async def _with_fresh_url(self, job: VideoJob) -> VideoJob:
        """Re-sign an expired artifact URL before the job is returned to a caller."""
        if job.status == VideoJobStatus.COMPLETED and job.artifact:
            artifact = await self.completion.refresh_url_if_expired(job)
            job.artifact = artifact.model_dump(mode="json")
        return job

    async def get_artifact_access(self, job_id: UUID, owner_id: str) -> Artifact:
        """Return the artifact with a signed URL that is valid right now.

        Raises:
            ArtifactNotReadyError: Job is not completed
        """
        job = await self.get_job(job_id, owner_id)
        if job.status != VideoJobStatus.COMPLETED or not job.artifact:
            raise ArtifactNotReadyError("Video is not ready for download")
        return await self.completion.refresh_url_if_expired(job)

    async def list_jobs(
        self,
        owner_id: str,
        status: VideoJobStatus | None = None,
        video_type: VideoType | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> JobPage:
        async with await self.uow_factory() as uow:
            jobs, total = await uow.videos.list_by_owner(
                owner_id,
                status=status,
                video_type=video_type,
                offset=(page - 1) * limit,
                limit=limit,
            )
        jobs = [await self._with_fresh_url(job) for job in jobs]
        return JobPage(jobs=jobs, total=total, page=page, limit=limit)

    async def get_stats(self, owner_id: str) -> dict:
        async with await self.uow_factory() as uow:
            by_status = await uow.videos.count_by_status(owner_id)
        return {
            "total": sum(by_status.values()),
            "by_status": {status.value: count for status, count in by_status.items()},
        }

    # Mutations

    async def update_details(
        self,
        job_id: UUID,
        owner_id: str,
        title: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> VideoJob:
        await self.get_job(job_id, owner_id)
        async with await self.uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)
            if job is None:
                raise JobNotFoundError(f"Video job {job_id} not found")
            job = await uow.videos.update_details(
                job, title=title, description=description, tags=tags
            )
        return await self._with_fresh_url(job)

    async def delete_job(self, job_id: UUID, owner_id: str) -> None:
        """Delete a job, its output artifact and any leftover input image.

        A running poll loop is cancelled; if it is mid-iteration it finds the
        record gone on its next read and stops.
        """
        job = await self.get_job(job_id, owner_id)
        self.scheduler.cancel(job_id)

        locations = []
        if job.artifact and job.artifact.get("location"):
            locations.append(job.artifact["location"])
        if job.input_image_location and job.status != VideoJobStatus.COMPLETED:
            locations.append(job.input_image_location)

        for location in locations:
            try:
                await self.storage.delete(location)
            except StorageObjectNotFoundError:
                logger.debug("video.delete.object_already_gone", job_id=str(job_id))
            except ServiceError as e:
                logger.warning(
                    "video.delete.storage_cleanup_failed",
                    job_id=str(job_id),
                    location=location,
                    error=str(e),
                )

        async with await self.uow_factory() as uow:
            attached = await uow.videos.get_by_id(job_id)
            if attached is not None:
                await uow.videos.delete(attached)

        logger.info("video.job.deleted", job_id=str(job_id), owner_id=owner_id)

    # Recovery

    async def force_completion_check(self, job_id: UUID) -> VideoJobStatus:
        return await self.recovery.force_completion_check(job_id)

    async def sweep_stuck_jobs(self) -> SweepResult:
        return await self.recovery.sweep()

    async def resume_interrupted_jobs(self) -> int:
        """Re-attach orchestration after a restart.

        Runs a sweep first, then restarts poll loops for jobs still processing and
        fails jobs left pending (their submission outcome is unknown).

        Assumes a single API process owns background work: poll loops started by
        another live process are not visible here and would be duplicated. The
        conditional status updates keep duplicates from writing twice. Pending
        jobs younger than ``pending_grace_seconds`` are left alone, since another
        process may still be submitting them.

        Returns:
            Number of poll loops resumed
        """
        await self.recovery.sweep()

        async with await self.uow_factory() as uow:
            processing = await uow.videos.get_by_status(VideoJobStatus.PROCESSING, limit=10_000)
            pending = await uow.videos.get_by_status(VideoJobStatus.PENDING, limit=10_000)

        stale_before = utcnow() - timedelta(seconds=self.pending_grace_seconds)
        failed_pending = 0
        for job in pending:
            if job.created_at > stale_before or self.scheduler.is_running(job.id):
                continue
            if await self.completion.fail_if_still_processing(job.id, INTERRUPTED_MESSAGE):
                failed_pending += 1

        resumed = 0
        for job in processing:
            if job.operation_name and not self.scheduler.is_running(job.id):
                self.scheduler.schedule(
                    job.id, lambda job_id=job.id: self.poller.poll_until_terminal(job_id)
                )
                resumed += 1

        logger.info("video.recovery.resumed", resumed=resumed, failed_pending=failed_pending)
        return resumed

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()


def build_orchestrator(
    settings: Settings,
    uow_factory: Callable,
    synthesis: VideoSynthesisClient,
    storage: ObjectStorageClient,
    scheduler: JobTaskScheduler | None = None,
    sleep=asyncio.sleep,
) -> VideoOrchestrator:
    """Wire the orchestrator from settings and already constructed clients."""

    async def claimed_locations(locations: list[str]) -> set[str]:
        async with await uow_factory() as uow:
            return await uow.videos.get_claimed_locations(locations)

    reconciler = BucketReconciler(
        storage=storage,
        output_prefix=settings.output_prefix,
        output_extension=settings.output_extension,
        per_job_output_prefix=settings.per_job_output_prefix,
        claimed_locations=claimed_locations,
    )
    completion = CompletionHandler(
        uow_factory=uow_factory,
        storage=storage,
        signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
    )
    submission = SubmissionService(
        uow_factory=uow_factory,
        synthesis=synthesis,
        reconciler=reconciler,
        completion=completion,
    )
    poller = OperationPoller(
        uow_factory=uow_factory,
        synthesis=synthesis,
        reconciler=reconciler,
        completion=completion,
        poll_interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        concurrency=asyncio.Semaphore(settings.poll_max_concurrency),
        sleep=sleep,
    )
    recovery = StuckJobRecovery(
        uow_factory=uow_factory,
        reconciler=reconciler,
        completion=completion,
    )
    return VideoOrchestrator(
        uow_factory=uow_factory,
        storage=storage,
        submission=submission,
        poller=poller,
        completion=completion,
        recovery=recovery,
        scheduler=scheduler or JobTaskScheduler(),
        input_image_prefix=settings.input_image_prefix,
        max_input_image_bytes=settings.max_input_image_bytes,
        # Outlasts any in-flight submit request
        pending_grace_seconds=settings.synthesis_request_timeout_seconds + 60,
    )
