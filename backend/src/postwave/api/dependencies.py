"""FastAPI dependencies shared by the video routes.

This module provides reusable FastAPI dependencies for:
- The process-wide video orchestrator
- Caller identification
"""

from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from postwave.services.video.orchestrator import VideoOrchestrator


def get_orchestrator(request: Request) -> VideoOrchestrator:
    """Get the video orchestrator built once in the app lifespan.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(orchestrator: VideoOrchestrator = Depends(get_orchestrator)):
        ...     page = await orchestrator.list_jobs(owner_id)
    """
    return request.app.state.orchestrator


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(max_length=64)] = None,
) -> str:
    """Identify the caller from the X-User-Id header.

    Authentication happens upstream (API gateway); this service only needs a
    stable owner identifier to scope jobs.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header"
        )
    return x_user_id.strip()
