"""Tests for bucket reconciliation (artifact inference from storage listings)."""

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from postwave.core.timezone import utcnow
from postwave.models.video_job import VideoJobStatus
from postwave.services.storage.object_storage import StoredObject
from postwave.services.video.reconciliation import BucketReconciler, rank_candidates


def stored(key: str, created_at) -> StoredObject:
    return StoredObject(key=key, location=f"gs://test-bucket/{key}", created_at=created_at)


def test_rank_candidates_prefers_closest_to_start():
    started_at = utcnow()
    objects = [
        stored("out/before.mp4", started_at - timedelta(seconds=1)),
        stored("out/late.mp4", started_at + timedelta(seconds=90)),
        stored("out/close.mp4", started_at + timedelta(seconds=2)),
        stored("out/close.json", started_at + timedelta(seconds=1)),
    ]

    ranked = rank_candidates(objects, started_at, ".mp4")

    assert [c.obj.key for c in ranked] == ["out/close.mp4", "out/late.mp4"]
    assert ranked[0].offset_seconds == pytest.approx(2.0)


def test_rank_candidates_breaks_ties_by_key():
    started_at = utcnow()
    same_time = started_at + timedelta(seconds=5)
    ranked = rank_candidates(
        [stored("out/b.mp4", same_time), stored("out/a.MP4", same_time)], started_at, ".mp4"
    )

    assert [c.obj.key for c in ranked] == ["out/a.MP4", "out/b.mp4"]


@pytest.mark.asyncio
async def test_per_job_prefix_only_sees_own_objects(storage, job_factory):
    reconciler = BucketReconciler(storage, output_prefix="generated-videos/")
    job = await job_factory(status=VideoJobStatus.PROCESSING)
    other = await job_factory(status=VideoJobStatus.PROCESSING)
    storage.add_object(
        f"generated-videos/{other.id}/sample_0.mp4", job.started_at + timedelta(seconds=1)
    )

    assert await reconciler.find_artifact(job) is None

    storage.add_object(
        f"generated-videos/{job.id}/sample_0.mp4", job.started_at + timedelta(seconds=40)
    )
    match = await reconciler.find_artifact(job)

    assert match is not None
    assert match.key == f"generated-videos/{job.id}/sample_0.mp4"
    assert reconciler.output_location_for(job.id) == (
        f"gs://test-bucket/generated-videos/{job.id}/"
    )


@pytest.mark.asyncio
async def test_job_without_start_time_never_matches(storage, job_factory):
    reconciler = BucketReconciler(storage, output_prefix="generated-videos/")
    job = await job_factory(status=VideoJobStatus.PENDING)
    storage.add_object(f"generated-videos/{job.id}/sample_0.mp4")

    assert await reconciler.find_artifact(job) is None


@pytest.mark.asyncio
async def test_shared_prefix_skips_claimed_and_warns_on_ambiguity(storage, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)
    claimed = storage.add_object("shared/claimed.mp4", job.started_at + timedelta(seconds=1))
    storage.add_object("shared/first.mp4", job.started_at + timedelta(seconds=3))
    storage.add_object("shared/second.mp4", job.started_at + timedelta(seconds=10))

    async def claimed_locations(locations):
        return {claimed} & set(locations)

    reconciler = BucketReconciler(
        storage,
        output_prefix="shared/",
        per_job_output_prefix=False,
        claimed_locations=claimed_locations,
    )

    with capture_logs() as logs:
        match = await reconciler.find_artifact(job)

    assert match.key == "shared/first.mp4"
    warnings = [log for log in logs if log["event"] == "video.reconciliation.ambiguous"]
    assert len(warnings) == 1
    assert warnings[0]["runner_up"] == "shared/second.mp4"


@pytest.mark.asyncio
async def test_shared_prefix_well_separated_candidates_do_not_warn(storage, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)
    storage.add_object("shared/first.mp4", job.started_at + timedelta(seconds=3))
    storage.add_object("shared/much-later.mp4", job.started_at + timedelta(seconds=300))

    async def nothing_claimed(locations):
        return set()

    reconciler = BucketReconciler(
        storage,
        output_prefix="shared/",
        per_job_output_prefix=False,
        claimed_locations=nothing_claimed,
    )

    with capture_logs() as logs:
        match = await reconciler.find_artifact(job)

    assert match.key == "shared/first.mp4"
    assert not [log for log in logs if log["event"] == "video.reconciliation.ambiguous"]
