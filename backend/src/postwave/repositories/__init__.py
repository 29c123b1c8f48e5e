"""Repository layer for the postwave backend.

Provides data access abstractions for all domain entities.
"""

from postwave.repositories.video_job import VideoJobRepository

__all__ = [
    "VideoJobRepository",
]
