"""Worker scheduling."""

from .rate_limiter import SlidingWindowRateLimiter
from .scheduler import WorkerScheduler, SchedulerStats

__all__ = [
    "SlidingWindowRateLimiter",
    "WorkerScheduler",
    "SchedulerStats",
]
