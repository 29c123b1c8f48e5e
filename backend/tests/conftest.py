"""pytest fixtures for postwave backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite (aiosqlite) database with all tables created
- uow_factory: Function-scoped UnitOfWork factory
- storage / synthesis: In-memory fakes for object storage and the synthesis API
- settings / orchestrator: Test settings and a fully wired orchestrator
- job_factory: Helper inserting jobs in any status
"""

import os

os.environ.setdefault("APP_ENV", "test")

import itertools  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from postwave.core.config import Settings  # noqa: E402
from postwave.core.database import setup_db_session  # noqa: E402
from postwave.core.timezone import utcnow  # noqa: E402
from postwave.models.video_job import VideoJob, VideoJobStatus, VideoType  # noqa: E402
from postwave.schemas.video import OperationState  # noqa: E402
from postwave.services.exceptions import (  # noqa: E402
    StorageAccessError,
    StorageObjectNotFoundError,
    StorageUnavailableError,
)
from postwave.services.storage.object_storage import ObjectMetadata, StoredObject  # noqa: E402
from postwave.services.video.orchestrator import build_orchestrator  # noqa: E402
from postwave.uow import create_uow_factory  # noqa: E402

TEST_BUCKET = "test-bucket"
OWNER_ID = "user-1"


async def no_sleep(_seconds: float) -> None:
    """Sleep replacement so poll loops run without real delays."""
    return None


class FakeObjectStorage:
    """In-memory stand-in for ObjectStorageClient.

    Signed URLs are unique per call so tests can tell a refreshed URL apart.
    """

    def __init__(self, bucket: str = TEST_BUCKET, uri_scheme: str = "gs"):
        self.bucket = bucket
        self.uri_scheme = uri_scheme
        self.objects: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.failing_prefixes: set[str] = set()
        self.metadata_error: Exception | None = None
        self._url_counter = itertools.count(1)

    def location_for(self, key: str) -> str:
        return f"{self.uri_scheme}://{self.bucket}/{key}"

    def key_for(self, location: str) -> str:
        prefix = f"{self.uri_scheme}://{self.bucket}/"
        if not location.startswith(prefix) or len(location) == len(prefix):
            raise StorageAccessError(f"Location {location!r} is not inside bucket {self.bucket!r}")
        return location[len(prefix) :]

    def add_object(
        self,
        key: str,
        created_at: datetime | None = None,
        size: int = 1024,
        content_type: str = "video/mp4",
    ) -> str:
        self.objects[key] = {
            "data": b"",
            "size": size,
            "content_type": content_type,
            "created_at": created_at or utcnow(),
        }
        return self.location_for(key)

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        self.objects[key] = {
            "data": data,
            "size": len(data),
            "content_type": content_type,
            "created_at": utcnow(),
        }
        return self.location_for(key)

    async def list_objects(self, prefix: str) -> list[StoredObject]:
        if prefix in self.failing_prefixes:
            raise StorageUnavailableError(f"Storage unreachable for {prefix}")
        return [
            StoredObject(
                key=key,
                location=self.location_for(key),
                created_at=obj["created_at"],
                size=obj["size"],
            )
            for key, obj in sorted(self.objects.items())
            if key.startswith(prefix)
        ]

    async def get_metadata(self, location: str) -> ObjectMetadata:
        if self.metadata_error is not None:
            raise self.metadata_error
        key = self.key_for(location)
        if key not in self.objects:
            raise StorageObjectNotFoundError(f"Object not found: {key}")
        obj = self.objects[key]
        return ObjectMetadata(size=obj["size"], content_type=obj["content_type"])

    async def get_signed_read_url(self, location: str, ttl_seconds: int) -> str:
        key = self.key_for(location)
        return f"https://signed.example/{key}?sig={next(self._url_counter)}&ttl={ttl_seconds}"

    async def delete(self, location: str) -> None:
        key = self.key_for(location)
        self.deleted.append(location)
        if self.objects.pop(key, None) is None:
            raise StorageObjectNotFoundError(f"Object not found: {key}")


class FakeSynthesisClient:
    """In-memory stand-in for VideoSynthesisClient.

    ``poll_results`` is consumed in order; each entry is an OperationState or an
    exception to raise. Once exhausted, polls report a not-done operation.
    """

    def __init__(self):
        self.submitted: list[tuple[list[dict], dict]] = []
        self.submit_error: Exception | None = None
        self.poll_results: list[OperationState | Exception] = []
        self.poll_calls: list[str] = []
        self._op_counter = itertools.count(1)

    async def submit(self, instances: list[dict], parameters: dict) -> OperationState:
        self.submitted.append((instances, parameters))
        if self.submit_error is not None:
            raise self.submit_error
        return OperationState(name=f"operations/op-{next(self._op_counter)}", done=False)

    async def poll_status(self, operation_name: str) -> OperationState:
        self.poll_calls.append(operation_name)
        if self.poll_results:
            result = self.poll_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return OperationState(name=operation_name, done=False)


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory bound to a fresh SQLite file database.

    A file (not ``:memory:``) database lets every UnitOfWork open its own
    connection, the same way the application does against PostgreSQL.
    """
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'postwave.db'}")
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return create_uow_factory(session_factory)


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def synthesis() -> FakeSynthesisClient:
    return FakeSynthesisClient()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(  # type: ignore[call-arg]
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'postwave.db'}",
        STORAGE_BUCKET=TEST_BUCKET,
        POLL_INTERVAL_SECONDS=0,
        POLL_MAX_ATTEMPTS=3,
        SIGNED_URL_TTL_SECONDS=3600,
        MAX_INPUT_IMAGE_BYTES=1024,
    )


@pytest_asyncio.fixture
async def orchestrator(settings, uow_factory, synthesis, storage):
    """Fully wired orchestrator over the fakes; background tasks are cancelled on teardown."""
    orchestrator = build_orchestrator(settings, uow_factory, synthesis, storage, sleep=no_sleep)
    yield orchestrator
    await orchestrator.shutdown()


@pytest.fixture
def job_factory(uow_factory):
    """Return an async helper that inserts a job and returns it."""

    async def _create(
        status: VideoJobStatus = VideoJobStatus.PENDING,
        owner_id: str = OWNER_ID,
        title: str = "Harbor at dawn",
        started_at: datetime | None = None,
        operation_name: str | None = None,
        input_image: dict | None = None,
        artifact: dict | None = None,
        created_at: datetime | None = None,
        video_type: VideoType = VideoType.TEXT_TO_VIDEO,
    ) -> VideoJob:
        if status == VideoJobStatus.PROCESSING:
            started_at = started_at or utcnow() - timedelta(minutes=1)
            operation_name = operation_name or "operations/existing"
        job = VideoJob(
            owner_id=owner_id,
            title=title,
            prompt="A slow aerial shot over a quiet harbor at sunrise",
            video_type=video_type,
            parameters={"aspect_ratio": "16:9", "duration_seconds": 5},
            status=status,
            started_at=started_at,
            operation={"name": operation_name, "done": False} if operation_name else None,
            input_image=input_image,
            artifact=artifact,
        )
        if created_at is not None:
            job.created_at = created_at
        async with await uow_factory() as uow:
            await uow.videos.add(job)
        return job

    return _create


@pytest.fixture
def load_job(uow_factory):
    """Return an async helper that reads a job back in a fresh UnitOfWork."""

    async def _load(job_id: UUID) -> VideoJob | None:
        async with await uow_factory() as uow:
            return await uow.videos.get_by_id(job_id)

    return _load
