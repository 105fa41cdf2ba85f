"""Durable job queue."""

import logging

from swapengine.core.config import QueueConfig
from swapengine.core.exceptions import QueueError

from .base import FailureOutcome, Job, JobQueue, JobState, RetryPolicy
from .memory import InMemoryJobQueue
from .redis_queue import RedisJobQueue

logger = logging.getLogger(__name__)


async def create_job_queue(config: QueueConfig) -> JobQueue:
    """
    连接 Redis 队列

    Redis 不可用且允许 fallback 时使用内存队列 (任务不跨进程持久化)。
    """
    policy = RetryPolicy(
        max_attempts=config.max_attempts,
        backoff_base_ms=config.backoff_base_ms,
    )
    queue = RedisJobQueue(
        redis_url=config.redis_url,
        prefix=config.prefix,
        name=config.name,
        policy=policy,
        socket_timeout=max(5.0, config.poll_interval + 5.0),
    )
    try:
        await queue.connect()
        return queue
    except QueueError as e:
        if not config.allow_memory_fallback:
            raise
        logger.warning(f"{e}, using in-memory job queue")

    memory_queue = InMemoryJobQueue(policy)
    await memory_queue.connect()
    return memory_queue


__all__ = [
    "FailureOutcome",
    "Job",
    "JobQueue",
    "JobState",
    "RetryPolicy",
    "InMemoryJobQueue",
    "RedisJobQueue",
    "create_job_queue",
]
