"""Background workers for video job orchestration."""

from postwave.workers.job_scheduler import JobTaskScheduler
from postwave.workers.video_poll_worker import OperationPoller

__all__ = [
    "JobTaskScheduler",
    "OperationPoller",
]
