"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from postwave.models.video_job import (
    TERMINAL_STATUSES,
    InvalidStateTransition,
    VideoJob,
    VideoJobStatus,
    VideoType,
)

__all__ = [
    "VideoJob",
    "VideoJobStatus",
    "VideoType",
    "InvalidStateTransition",
    "TERMINAL_STATUSES",
]
