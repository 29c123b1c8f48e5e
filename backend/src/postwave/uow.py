"""Unit of Work for video job persistence.

Each unit wraps one database session: changes made through ``uow.videos`` are
committed together when the block exits cleanly and rolled back otherwise.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postwave.repositories.video_job import VideoJobRepository

logger = structlog.get_logger()


class UnitOfWork:
    """One transaction over the video job tables.

    Example:
        async with await uow_factory() as uow:
            job = await uow.videos.get_by_id(job_id)
            await uow.videos.update_status(job.id, VideoJobStatus.FAILED, processing={...})
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.videos = VideoJobRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back on error, always close the session.

        Exceptions are never suppressed.
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Return an async callable producing a fresh UnitOfWork per call.

    Orchestration steps open their own unit for every read and conditional
    write, so no session is held across provider or storage calls.
    """

    async def _create_uow():
        return UnitOfWork(session_factory())

    return _create_uow
