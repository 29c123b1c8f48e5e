"""HTTP-level tests for the video routes.

The app is driven through httpx's ASGITransport, which does not run the
lifespan; app.state is populated from the test fixtures instead.
"""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from postwave.api.rate_limit import limiter
from postwave.app import create_app
from postwave.models.video_job import VideoJobStatus

HEADERS = {"X-User-Id": "user-1"}
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest_asyncio.fixture
async def client(settings, session_factory, uow_factory, orchestrator):
    limiter.reset()
    app = create_app(settings)
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.orchestrator = orchestrator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_missing_user_header_is_rejected(client):
    response = await client.get("/api/videos")

    assert response.status_code == 401
    assert response.json()["detail"] == "Missing X-User-Id header"


@pytest.mark.asyncio
async def test_create_video_returns_pending_job(client, orchestrator, synthesis, load_job):
    response = await client.post(
        "/api/videos",
        headers=HEADERS,
        json={
            "title": "Harbor at dawn",
            "prompt": "A slow aerial shot over a quiet harbor at sunrise",
            "parameters": {"aspect_ratio": "9:16", "duration_seconds": 8},
            "tags": "harbor, sunrise",
        },
    )

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "pending"
    assert data["tags"] == ["harbor", "sunrise"]
    assert data["parameters"]["aspect_ratio"] == "9:16"
    assert data["artifact"] is None

    # Nothing ever appears, so the background loop times out within its budget
    job_id = UUID(data["id"])
    await orchestrator.scheduler.wait(job_id)
    stored = await load_job(job_id)
    assert stored.status == VideoJobStatus.FAILED
    assert len(synthesis.submitted) == 1


@pytest.mark.asyncio
async def test_image_to_video_requires_input_image(client):
    response = await client.post(
        "/api/videos",
        headers=HEADERS,
        json={
            "title": "Animated photo",
            "prompt": "Bring this still photo of a lighthouse to life",
            "video_type": "image-to-video",
        },
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_is_owner_scoped(client, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)

    own = await client.get(f"/api/videos/{job.id}/status", headers=HEADERS)
    other = await client.get(f"/api/videos/{job.id}/status", headers={"X-User-Id": "user-2"})
    missing = await client.get(f"/api/videos/{uuid4()}/status", headers=HEADERS)

    assert own.status_code == 200
    assert own.json()["status"] == "processing"
    assert own.json()["processing_info"]["started_at"] is not None
    assert other.status_code == 403
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_artifact_of_unfinished_job_conflicts(client, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)

    response = await client.get(f"/api/videos/{job.id}/artifact", headers=HEADERS)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_force_completion_finds_output(client, storage, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)
    storage.add_object(
        f"generated-videos/{job.id}/sample_0.mp4", created_at=job.started_at + timedelta(seconds=5)
    )

    response = await client.post(f"/api/videos/{job.id}/force-completion", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    artifact = await client.get(f"/api/videos/{job.id}/artifact", headers=HEADERS)
    assert artifact.status_code == 200
    assert artifact.json()["filename"] == "sample_0.mp4"
    assert artifact.json()["url"].startswith("https://signed.example/")


@pytest.mark.asyncio
async def test_list_videos_paginates(client, job_factory):
    for i in range(3):
        await job_factory(title=f"job {i}")
    await job_factory(owner_id="user-2")

    response = await client.get("/api/videos", headers=HEADERS, params={"page": 2, "limit": 2})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert len(data["videos"]) == 1
    assert (data["total_pages"], data["has_next"], data["has_prev"]) == (2, False, True)


@pytest.mark.asyncio
async def test_list_videos_rejects_oversized_limit(client):
    response = await client.get("/api/videos", headers=HEADERS, params={"limit": 51})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stats(client, job_factory):
    await job_factory()
    await job_factory(status=VideoJobStatus.FAILED)

    response = await client.get("/api/videos/stats", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"total": 2, "by_status": {"pending": 1, "failed": 1}}


@pytest.mark.asyncio
async def test_update_video_details(client, job_factory):
    job = await job_factory()

    response = await client.patch(
        f"/api/videos/{job.id}",
        headers=HEADERS,
        json={"title": "Renamed", "tags": "a, b"},
    )

    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["tags"] == ["a", "b"]
    assert response.json()["prompt"] == job.prompt


@pytest.mark.asyncio
async def test_delete_video(client, job_factory):
    job = await job_factory(status=VideoJobStatus.FAILED)

    response = await client.delete(f"/api/videos/{job.id}", headers=HEADERS)
    again = await client.get(f"/api/videos/{job.id}/status", headers=HEADERS)

    assert response.status_code == 204
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_upload_input_image(client, storage):
    response = await client.post(
        "/api/videos/input-images",
        headers=HEADERS,
        files={"file": ("photo.png", PNG_BYTES, "image/png")},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["media_type"] == "image/png"
    assert storage.objects[storage.key_for(data["location"])]["data"] == PNG_BYTES


@pytest.mark.asyncio
async def test_upload_rejects_non_image(client, storage):
    response = await client.post(
        "/api/videos/input-images",
        headers=HEADERS,
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 400
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_check_stuck(client, storage, job_factory):
    job = await job_factory(status=VideoJobStatus.PROCESSING)
    storage.add_object(
        f"generated-videos/{job.id}/sample_0.mp4", created_at=job.started_at + timedelta(seconds=5)
    )

    response = await client.post("/api/videos/check-stuck", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"total": 1, "reconciled": 1, "errors": []}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_create_rejects_input_image_outside_callers_uploads(client, storage, synthesis):
    victim_key = "generated-videos/victim-job/sample_0.mp4"
    victim_location = storage.add_object(victim_key)

    response = await client.post(
        "/api/videos",
        headers={"X-User-Id": "attacker"},
        json={
            "title": "Animated photo",
            "prompt": "Bring this still photo of a lighthouse to life",
            "video_type": "image-to-video",
            "input_image": {"location": victim_location, "media_type": "image/png"},
        },
    )

    assert response.status_code == 400
    assert victim_key in storage.objects
    assert storage.deleted == []
    assert synthesis.submitted == []


@pytest.mark.asyncio
async def test_reads_return_refreshed_artifact_url(client, storage, job_factory):
    location = storage.add_object("generated-videos/done/sample_0.mp4")
    job = await job_factory(
        status=VideoJobStatus.COMPLETED,
        artifact={
            "location": location,
            "url": "https://signed.example/OLD",
            "url_expiry": "2020-01-01T00:00:00",
            "size": 1024,
            "content_type": "video/mp4",
            "filename": "sample_0.mp4",
        },
    )

    status_response = await client.get(f"/api/videos/{job.id}/status", headers=HEADERS)
    list_response = await client.get("/api/videos", headers=HEADERS)

    assert status_response.status_code == 200
    status_url = status_response.json()["artifact"]["url"]
    assert status_url != "https://signed.example/OLD"
    assert status_url.startswith("https://signed.example/generated-videos/done/")

    assert list_response.status_code == 200
    (listed,) = list_response.json()["videos"]
    assert listed["artifact"]["url"] != "https://signed.example/OLD"


@pytest.mark.asyncio
async def test_upload_is_rate_limited_per_user(
    settings, session_factory, uow_factory, orchestrator
):
    limiter.reset()
    app = create_app(settings.model_copy(update={"rate_limit_upload": "2/minute"}))
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.orchestrator = orchestrator
    files = {"file": ("photo.png", PNG_BYTES, "image/png")}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        codes = []
        for _ in range(3):
            response = await client.post("/api/videos/input-images", headers=HEADERS, files=files)
            codes.append(response.status_code)
        other = await client.post(
            "/api/videos/input-images", headers={"X-User-Id": "user-2"}, files=files
        )

    assert codes == [201, 201, 429]
    assert other.status_code == 201
