"""VideoJob repository for the postwave backend.

Provides data access methods for VideoJob entities. All status changes go through
conditional UPDATE statements so that concurrent writers (a job's poll loop and an
operator-triggered sweep) can never move a job out of a terminal state or write two
different artifacts for the same job.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from postwave.core.timezone import utcnow
from postwave.models.video_job import VideoJob, VideoJobStatus, VideoType

# processing info columns that update_status accepts in its patch
PROCESSING_FIELDS = frozenset({"started_at", "completed_at", "error_message", "retry_count"})


class VideoJobRepository:
    """Repository for VideoJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: VideoJob) -> VideoJob:
        """Persist new video job to database.

        Args:
            job: VideoJob entity to persist (status must be pending)

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> VideoJob | None:
        """Retrieve video job by UUID, bypassing any stale identity-map copy.

        Args:
            job_id: Job's unique identifier

        Returns:
            VideoJob if found, None otherwise
        """
        result = await self.session.execute(
            select(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_owner(
        self,
        owner_id: str,
        status: VideoJobStatus | None = None,
        video_type: VideoType | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[VideoJob], int]:
        """Retrieve an owner's jobs with optional filters, pagination and total count.

        Args:
            owner_id: Requesting user's identifier
            status: Only return jobs in this status (optional)
            video_type: Only return jobs of this type (optional)
            offset: Number of jobs to skip
            limit: Maximum number of jobs to return

        Returns:
            Tuple of (jobs for current page newest first, total matching jobs)
        """
        conditions = [VideoJob.owner_id == owner_id]
        if status is not None:
            conditions.append(VideoJob.status == status)  # type: ignore[arg-type]
        if video_type is not None:
            conditions.append(VideoJob.video_type == video_type)  # type: ignore[arg-type]

        count_result = await self.session.execute(
            select(func.count(VideoJob.id)).where(*conditions)  # type: ignore[arg-type]
        )
        total = count_result.scalar() or 0

        data_result = await self.session.execute(
            select(VideoJob)
            .where(*conditions)  # type: ignore[arg-type]
            .order_by(VideoJob.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        return list(data_result.scalars().all()), total

    async def get_by_status(
        self, status: VideoJobStatus, limit: int = 100, offset: int = 0
    ) -> list[VideoJob]:
        """Retrieve jobs by status, oldest first.

        Args:
            status: Job status to filter by
            limit: Maximum number of jobs to return (default: 100)
            offset: Number of jobs to skip (default: 0)
        """
        result = await self.session.execute(
            select(VideoJob)
            .where(VideoJob.status == status)  # type: ignore[arg-type]
            .order_by(VideoJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        job_id: UUID,
        status: VideoJobStatus,
        *,
        operation: dict | None = None,
        artifact: dict | None = None,
        processing: dict[str, Any] | None = None,
    ) -> bool:
        """Atomically merge a status change with any subset of the field groups.

        The UPDATE only matches while the job is in a status from which
        ``status`` may be entered (see ``VideoJob.predecessors_of``). A job that
        has already reached a terminal state, or has been deleted, is left
        untouched and ``False`` is returned.

        Args:
            job_id: Job's unique identifier
            status: Target status
            operation: Full operation payload (replaces the stored one)
            artifact: Full artifact payload (replaces the stored one)
            processing: Processing info columns to set

        Returns:
            True if the job was updated, False if the conditional update matched nothing

        Raises:
            InvalidStateTransition: If ``status`` can never be entered by an update
            ValueError: If ``processing`` contains unknown keys
        """
        allowed_from = VideoJob.predecessors_of(status)

        values: dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if operation is not None:
            values["operation"] = operation
        if artifact is not None:
            values["artifact"] = artifact
        if processing:
            unknown = set(processing) - PROCESSING_FIELDS
            if unknown:
                raise ValueError(f"Unknown processing info fields: {sorted(unknown)}")
            values.update(processing)

        result = await self.session.execute(
            update(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.status.in_(list(allowed_from)))  # type: ignore[attr-defined]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def increment_retry_count(self, job_id: UUID) -> bool:
        """Record a transient polling error on a processing job.

        Returns:
            True if the job was still processing and was updated
        """
        result = await self.session.execute(
            update(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.status == VideoJobStatus.PROCESSING)  # type: ignore[arg-type]
            .values(retry_count=VideoJob.retry_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def refresh_artifact_url(self, job_id: UUID, artifact: dict) -> bool:
        """Replace the artifact payload of a completed job (signed URL refresh).

        Returns:
            True if the job was completed and was updated
        """
        result = await self.session.execute(
            update(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.status == VideoJobStatus.COMPLETED)  # type: ignore[arg-type]
            .values(artifact=artifact, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def get_claimed_locations(self, locations: list[str]) -> set[str]:
        """Return which of the given storage locations already belong to a completed job.

        Args:
            locations: Candidate artifact storage URIs

        Returns:
            Subset of ``locations`` already recorded as some job's artifact
        """
        if not locations:
            return set()

        location_expr = VideoJob.artifact["location"].as_string()  # type: ignore[index]
        result = await self.session.execute(
            select(location_expr).where(
                VideoJob.status == VideoJobStatus.COMPLETED,  # type: ignore[arg-type]
                location_expr.in_(locations),
            )
        )
        return {row[0] for row in result.fetchall()}

    async def update_details(
        self,
        job: VideoJob,
        title: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> VideoJob:
        """Update descriptive fields only; prompt, input image and parameters never change.

        Args:
            job: VideoJob entity to update
            title: New title (optional)
            description: New description (optional, empty string clears it)
            tags: New tag list (optional)
        """
        if title is not None:
            job.title = title
        if description is not None:
            job.description = description or None
        if tags is not None:
            job.tags = tags
        job.updated_at = utcnow()
        self.session.add(job)
        await self.session.flush()
        await self.session.refresh(job)
        return job

    async def delete(self, job: VideoJob) -> None:
        """Delete job record."""
        await self.session.delete(job)
        await self.session.flush()

    async def count_by_status(self, owner_id: str) -> dict[VideoJobStatus, int]:
        """Count an owner's jobs grouped by status.

        Returns:
            Mapping of status to count (statuses with no jobs are omitted)
        """
        result = await self.session.execute(
            select(VideoJob.status, func.count(VideoJob.id))  # type: ignore[arg-type]
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
            .group_by(VideoJob.status)
        )
        return {status: count for status, count in result.all()}

