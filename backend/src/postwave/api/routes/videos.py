"""Video generation API endpoints.

This module implements REST endpoints for video jobs:
- POST /api/videos/input-images - Upload a conditioning image for image-to-video
- POST /api/videos - Create a job; orchestration continues in the background
- GET /api/videos - Paginated list of the caller's jobs
- GET /api/videos/stats - Job counts by status
- POST /api/videos/check-stuck - Reconcile all processing jobs against the bucket
- GET /api/videos/{job_id}/status - Current status, processing info and artifact
- GET /api/videos/{job_id}/artifact - Artifact with a currently valid signed URL
- PATCH /api/videos/{job_id} - Update title, description and tags
- POST /api/videos/{job_id}/force-completion - Run a completion check for one job
- DELETE /api/videos/{job_id} - Delete a job and its stored objects

The caller is identified by the X-User-Id header set by the upstream auth layer.
Upload and create are rate limited per caller; exceeding a limit returns 429.
"""

from datetime import datetime
from typing import Any, NoReturn
from uuid import UUID

import structlog
from fastapi import (
    APIRouter,
    Depends,
    File,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from pydantic import BaseModel, Field, field_validator

from postwave.api.dependencies import get_current_user_id, get_orchestrator
from postwave.api.rate_limit import create_job_limit, limiter, upload_image_limit
from postwave.models.video_job import VideoJob, VideoJobStatus, VideoType
from postwave.schemas.video import Artifact, InputImage, VideoJobCreate
from postwave.services.exceptions import (
    ArtifactNotReadyError,
    JobAccessDeniedError,
    JobNotFoundError,
    PreconditionError,
    ServiceError,
)
from postwave.services.video.orchestrator import VideoOrchestrator

logger = structlog.get_logger()
router = APIRouter(prefix="/api/videos", tags=["videos"])


# Request/Response Models


class UpdateDetailsRequest(BaseModel):
    """Request model for updating a job's descriptive fields."""

    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = Field(
        default=None,
        description="Tag list, or a comma-separated string",
    )

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return v


class ProcessingInfoDTO(BaseModel):
    """Processing timestamps and error details of a job."""

    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0


class ArtifactDTO(BaseModel):
    """Output video with its time-limited access URL."""

    url: str = Field(..., description="Signed read URL")
    url_expiry: datetime = Field(..., description="When the signed URL stops working (UTC)")
    size: int | None = Field(default=None, description="Object size in bytes")
    content_type: str
    filename: str


class VideoJobDTO(BaseModel):
    """Data Transfer Object for video jobs in API responses."""

    id: UUID
    title: str
    description: str | None = None
    tags: list[str]
    video_type: VideoType
    prompt: str
    parameters: dict
    input_image: dict | None = None
    status: VideoJobStatus
    operation_name: str | None = None
    processing_info: ProcessingInfoDTO
    artifact: ArtifactDTO | None = None
    created_at: datetime
    updated_at: datetime


class VideoStatusResponse(BaseModel):
    """Response model for status queries."""

    id: UUID
    status: VideoJobStatus
    processing_info: ProcessingInfoDTO
    artifact: ArtifactDTO | None = None


class VideoListResponse(BaseModel):
    """Response model for paginated job list."""

    videos: list[VideoJobDTO]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class VideoStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]


class SweepResponse(BaseModel):
    """Response model for stuck-job sweeps."""

    total: int = Field(..., description="Jobs in processing when the sweep started")
    reconciled: int = Field(..., description="Jobs moved to completed by this sweep")
    errors: list[str] = Field(default_factory=list)


class ForceCompletionResponse(BaseModel):
    id: UUID
    status: VideoJobStatus


def processing_info(job: VideoJob) -> ProcessingInfoDTO:
    """Group a job's processing columns for API responses."""
    return ProcessingInfoDTO(
        started_at=job.started_at,
        completed_at=job.completed_at,
        error_message=job.error_message,
        retry_count=job.retry_count,
    )


def artifact_dto(artifact: Artifact | dict | None) -> ArtifactDTO | None:
    if artifact is None:
        return None
    if isinstance(artifact, dict):
        artifact = Artifact.model_validate(artifact)
    return ArtifactDTO(
        url=artifact.url,
        url_expiry=artifact.url_expiry,
        size=artifact.size,
        content_type=artifact.content_type,
        filename=artifact.filename,
    )


def job_dto(job: VideoJob) -> VideoJobDTO:
    return VideoJobDTO(
        id=job.id,
        title=job.title,
        description=job.description,
        tags=job.tags,
        video_type=job.video_type,
        prompt=job.prompt,
        parameters=job.parameters,
        input_image=job.input_image,
        status=job.status,
        operation_name=job.operation_name,
        processing_info=processing_info(job),
        artifact=artifact_dto(job.artifact),
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def raise_http_error(e: Exception, event: str, **context: Any) -> NoReturn:
    """Translate a service error into the matching HTTPException."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, JobNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, JobAccessDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, ArtifactNotReadyError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, PreconditionError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    # Unexpected error (database connection, storage outage, etc.)
    logger.error(event, error=str(e), error_type=type(e).__name__, **context)
    detail = str(e) if isinstance(e, ServiceError) else "Internal server error"
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


# API Endpoints


@router.post("/input-images", response_model=InputImage, status_code=status.HTTP_201_CREATED)
@limiter.limit(upload_image_limit)
async def upload_input_image(
    request: Request,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> InputImage:
    """Upload a JPEG, PNG or GIF image for a later image-to-video job.

    Rate limited per caller (RATE_LIMIT_UPLOAD).

    Returns:
        InputImage with the storage location to pass as ``input_image`` on create

    Raises:
        HTTPException 400: Unsupported type, empty file or file too large
    """
    try:
        # Read one byte past the limit so oversized uploads are detected without
        # buffering the whole body
        data = await file.read(orchestrator.max_input_image_bytes + 1)
        return await orchestrator.upload_input_image(
            owner_id, data, file.filename or "", file.content_type
        )
    except Exception as e:
        raise_http_error(e, "video.api.upload_failed", owner_id=owner_id)


@router.post("", response_model=VideoJobDTO, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(create_job_limit)
async def create_video(
    request: Request,
    body: VideoJobCreate,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> VideoJobDTO:
    """Create a video job and start generation in the background.

    The response describes the pending job; poll ``/{job_id}/status`` for progress.
    Rate limited per caller (RATE_LIMIT_CREATE), since each job starts a paid request.

    Example:
        POST /api/videos
        {
            "title": "Harbor at dawn",
            "prompt": "A slow aerial shot over a quiet harbor at sunrise",
            "parameters": {"aspect_ratio": "16:9", "duration_seconds": 5},
            "tags": "harbor, sunrise"
        }
    """
    try:
        job = await orchestrator.create_job(owner_id, body)
        return job_dto(job)
    except Exception as e:
        raise_http_error(e, "video.api.create_failed", owner_id=owner_id)


@router.get("", response_model=VideoListResponse)
async def list_videos(
    status_filter: VideoJobStatus | None = Query(default=None, alias="status"),
    video_type: VideoType | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> VideoListResponse:
    """List the caller's jobs, newest first."""
    try:
        result = await orchestrator.list_jobs(
            owner_id, status=status_filter, video_type=video_type, page=page, limit=limit
        )
        return VideoListResponse(
            videos=[job_dto(job) for job in result.jobs],
            total=result.total,
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
            has_next=result.has_next,
            has_prev=result.has_prev,
        )
    except Exception as e:
        raise_http_error(e, "video.api.list_failed", owner_id=owner_id)


@router.get("/stats", response_model=VideoStatsResponse)
async def get_video_stats(
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> VideoStatsResponse:
    try:
        stats = await orchestrator.get_stats(owner_id)
        return VideoStatsResponse(**stats)
    except Exception as e:
        raise_http_error(e, "video.api.stats_failed", owner_id=owner_id)


@router.post("/check-stuck", response_model=SweepResponse)
async def check_stuck_videos(
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> SweepResponse:
    """Reconcile every processing job against the output bucket.

    Per-job storage errors are reported in ``errors``; they do not fail the request.
    """
    try:
        result = await orchestrator.sweep_stuck_jobs()
        logger.info(
            "video.api.sweep_requested",
            owner_id=owner_id,
            total=result.total,
            reconciled=result.reconciled,
        )
        return SweepResponse(total=result.total, reconciled=result.reconciled, errors=result.errors)
    except Exception as e:
        raise_http_error(e, "video.api.sweep_failed", owner_id=owner_id)


@router.get("/{job_id}/status", response_model=VideoStatusResponse)
async def get_video_status(
    job_id: UUID,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> VideoStatusResponse:
    """Return the job's status with grouped processing info.

    Completed jobs include the artifact, re-signed first if its URL has expired.
    """
    try:
        job = await orchestrator.get_status(job_id, owner_id)
        return VideoStatusResponse(
            id=job.id,
            status=job.status,
            processing_info=processing_info(job),
            artifact=artifact_dto(job.artifact),
        )
    except Exception as e:
        raise_http_error(e, "video.api.status_failed", job_id=str(job_id))


@router.get("/{job_id}/artifact", response_model=ArtifactDTO)
async def get_video_artifact(
    job_id: UUID,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> ArtifactDTO:
    """Return the completed video with a signed URL, re-signed if it has expired.

    Raises:
        HTTPException 409: Job is not completed
    """
    try:
        artifact = await orchestrator.get_artifact_access(job_id, owner_id)
        return artifact_dto(artifact)  # type: ignore[return-value]
    except Exception as e:
        raise_http_error(e, "video.api.artifact_failed", job_id=str(job_id))


@router.patch("/{job_id}", response_model=VideoJobDTO)
async def update_video(
    job_id: UUID,
    request: UpdateDetailsRequest,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> VideoJobDTO:
    """Update title, description or tags. Prompt and parameters are immutable."""
    try:
        job = await orchestrator.update_details(
            job_id,
            owner_id,
            title=request.title,
            description=request.description,
            tags=request.tags,
        )
        return job_dto(job)
    except Exception as e:
        raise_http_error(e, "video.api.update_failed", job_id=str(job_id))


@router.post("/{job_id}/force-completion", response_model=ForceCompletionResponse)
async def force_video_completion(
    job_id: UUID,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> ForceCompletionResponse:
    """Look for the job's output in the bucket now and complete it on a match."""
    try:
        await orchestrator.get_job(job_id, owner_id)
        new_status = await orchestrator.force_completion_check(job_id)
        return ForceCompletionResponse(id=job_id, status=new_status)
    except Exception as e:
        raise_http_error(e, "video.api.force_completion_failed", job_id=str(job_id))


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(
    job_id: UUID,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: VideoOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Delete the job, its generated video and any leftover input image."""
    try:
        await orchestrator.delete_job(job_id, owner_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        raise_http_error(e, "video.api.delete_failed", job_id=str(job_id))
