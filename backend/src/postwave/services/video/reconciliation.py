"""Bucket reconciliation: infer job completion from objects in the output location.

The provider's ``done`` flag is sometimes late or never arrives even though the
output video is already in the bucket. This module scans the job's output prefix
for objects created at or after the job started and picks the one created closest
to the start time.

This is best-effort. The storage listing carries no request id, so when several
jobs share one output prefix an artifact can be attributed to the wrong job if
their generations finish within a short window. Two mitigations are applied:

- with ``per_job_output_prefix`` (the default) each job writes under its own
  ``<output_prefix><job_id>/`` prefix, so only that job's objects are considered
- objects already recorded as another job's artifact are never picked, and a
  warning is logged when the best two candidates are too close to tell apart
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from postwave.models.video_job import VideoJob
from postwave.services.storage.object_storage import ObjectStorageClient, StoredObject

logger = structlog.get_logger(__name__)

# Candidates closer than this to each other (in seconds from job start) are
# indistinguishable by the heuristic.
AMBIGUITY_WINDOW_SECONDS = 30.0


@dataclass(frozen=True)
class ScoredCandidate:
    obj: StoredObject
    score: float
    offset_seconds: float


def score_candidate(created_at: datetime, started_at: datetime) -> float:
    """Score inversely proportional to the distance between creation and job start."""
    return 1.0 / (1.0 + abs((created_at - started_at).total_seconds()))


def rank_candidates(
    objects: Iterable[StoredObject], started_at: datetime, extension: str
) -> list[ScoredCandidate]:
    """Filter and rank listing entries for one job, best first.

    Only objects created at or after ``started_at`` whose key ends with
    ``extension`` are kept. Ties are broken by key for a stable order.
    """
    extension = extension.lower()
    ranked = [
        ScoredCandidate(
            obj=obj,
            score=score_candidate(obj.created_at, started_at),
            offset_seconds=(obj.created_at - started_at).total_seconds(),
        )
        for obj in objects
        if obj.created_at >= started_at and obj.key.lower().endswith(extension)
    ]
    ranked.sort(key=lambda c: (-c.score, c.obj.key))
    return ranked


class BucketReconciler:
    """Looks for a job's output artifact directly in object storage."""

    def __init__(
        self,
        storage: ObjectStorageClient,
        output_prefix: str,
        output_extension: str = ".mp4",
        per_job_output_prefix: bool = True,
        claimed_locations: Callable[[list[str]], Awaitable[set[str]]] | None = None,
    ):
        """Initialize reconciler.

        Args:
            storage: Storage client (read-only use)
            output_prefix: Prefix the provider writes generated videos under
            output_extension: Expected extension of generated videos
            per_job_output_prefix: Whether each job has its own sub-prefix
            claimed_locations: Returns which of the given locations already belong
                to a completed job (needed when jobs share one prefix)
        """
        self.storage = storage
        self.output_prefix = output_prefix
        self.output_extension = output_extension
        self.per_job_output_prefix = per_job_output_prefix
        self.claimed_locations = claimed_locations

    def prefix_for(self, job_id: UUID) -> str:
        """Storage key prefix where ``job_id``'s output is expected."""
        if self.per_job_output_prefix:
            return f"{self.output_prefix}{job_id}/"
        return self.output_prefix

    def output_location_for(self, job_id: UUID) -> str:
        """Output storage URI to hand to the provider at submission."""
        return self.storage.location_for(self.prefix_for(job_id))

    async def find_artifact(self, job: VideoJob) -> StoredObject | None:
        """Return the most plausible output object for ``job``, or None if not there yet.

        Raises:
            TransientError: If the bucket listing fails (callers retry on next pass)
        """
        if job.started_at is None:
            return None

        objects = await self.storage.list_objects(self.prefix_for(job.id))
        ranked = rank_candidates(objects, job.started_at, self.output_extension)
        if not ranked:
            return None

        if not self.per_job_output_prefix and self.claimed_locations is not None:
            claimed = await self.claimed_locations([c.obj.location for c in ranked])
            ranked = [c for c in ranked if c.obj.location not in claimed]
            if not ranked:
                return None

            if (
                len(ranked) > 1
                and abs(ranked[1].offset_seconds - ranked[0].offset_seconds)
                < AMBIGUITY_WINDOW_SECONDS
            ):
                logger.warning(
                    "video.reconciliation.ambiguous",
                    job_id=str(job.id),
                    chosen=ranked[0].obj.key,
                    runner_up=ranked[1].obj.key,
                    candidates=len(ranked),
                )

        best = ranked[0]
        logger.info(
            "video.reconciliation.match",
            job_id=str(job.id),
            key=best.obj.key,
            offset_seconds=best.offset_seconds,
            candidates=len(ranked),
        )
        return best.obj
