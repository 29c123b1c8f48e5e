"""VideoJob entity - one video generation request with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel

from postwave.core.timezone import utcnow


class VideoJobStatus(str, Enum):
    """Video job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoType(str, Enum):
    """Kind of generation request."""

    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid video job state transition."""

    pass


# Statuses a job may be in immediately before entering the key status.
# PROCESSING -> PROCESSING covers poll bookkeeping writes.
_PREDECESSORS: dict[VideoJobStatus, frozenset[VideoJobStatus]] = {
    VideoJobStatus.PROCESSING: frozenset({VideoJobStatus.PENDING, VideoJobStatus.PROCESSING}),
    VideoJobStatus.COMPLETED: frozenset({VideoJobStatus.PROCESSING}),
    VideoJobStatus.FAILED: frozenset({VideoJobStatus.PENDING, VideoJobStatus.PROCESSING}),
}

TERMINAL_STATUSES = frozenset({VideoJobStatus.COMPLETED, VideoJobStatus.FAILED})


class VideoJob(SQLModel, table=True):
    """VideoJob tracks a generation request from submission to a terminal state.

    Field groups stored as JSON (``operation``, ``artifact``, ``input_image``,
    ``parameters``) are always written whole, never patched key by key.
    """

    __tablename__ = "video_jobs"  # type: ignore[assignment]
    __table_args__ = (Index("ix_video_jobs_owner_created", "owner_id", "created_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=64, index=True)

    # Descriptive fields (editable by the owner)
    title: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    # Prompt, input image and parameter snapshot (immutable after creation)
    video_type: VideoType = Field(default=VideoType.TEXT_TO_VIDEO)
    prompt: str = Field(max_length=1000)
    input_image: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    parameters: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    status: VideoJobStatus = Field(default=VideoJobStatus.PENDING, index=True)

    # Provider operation: {"name", "done", "metadata", "response", "error"}
    operation: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))

    # Output artifact: {"location", "url", "url_expiry", "size", "content_type", "filename"}
    artifact: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))

    # Processing info. Timestamps are naive UTC, stored without timezone.
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    error_message: Optional[str] = Field(default=None, max_length=1000)
    retry_count: int = Field(default=0, ge=0)

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False)
    )

    @staticmethod
    def predecessors_of(status: VideoJobStatus) -> frozenset[VideoJobStatus]:
        """Return the statuses from which ``status`` may be entered.

        Raises:
            InvalidStateTransition: If ``status`` can never be entered by an update
                (jobs are only ever created in pending)
        """
        try:
            return _PREDECESSORS[status]
        except KeyError:
            raise InvalidStateTransition(
                f"Cannot transition into {status.value}. Jobs only start in pending."
            ) from None

    def can_transition_to(self, status: VideoJobStatus) -> bool:
        """Check whether moving from the current status to ``status`` is allowed."""
        return status in _PREDECESSORS and self.status in _PREDECESSORS[status]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def operation_name(self) -> str | None:
        if not self.operation:
            return None
        return self.operation.get("name")

    @property
    def input_image_location(self) -> str | None:
        if not self.input_image:
            return None
        return self.input_image.get("location")
