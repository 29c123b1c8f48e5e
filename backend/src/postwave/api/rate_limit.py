"""Per-caller rate limiting for endpoints that start paid synthesis work.

Limits are keyed on the X-User-Id header (client address when absent) and read
from settings each time ``create_app`` runs.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from postwave.core.config import Settings


def caller_key(request: Request) -> str:
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


class RateLimits:
    """Current limit strings, resolved per request by the route decorators."""

    def __init__(self) -> None:
        self.create_job = "10/hour"
        self.upload_image = "100/15 minutes"

    def configure(self, settings: Settings) -> None:
        self.create_job = settings.rate_limit_create
        self.upload_image = settings.rate_limit_upload
        limiter.enabled = settings.rate_limit_enabled


rate_limits = RateLimits()
limiter = Limiter(key_func=caller_key)


def create_job_limit() -> str:
    return rate_limits.create_job


def upload_image_limit() -> str:
    return rate_limits.upload_image
