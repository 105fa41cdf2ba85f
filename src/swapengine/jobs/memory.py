"""
内存任务队列

Redis 不可用时的 fallback, 也用于测试。进程退出后任务丢失。
"""

import asyncio
import heapq
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from .base import FailureOutcome, Job, JobQueue, JobState, RetryPolicy

logger = logging.getLogger(__name__)


class InMemoryJobQueue(JobQueue):
    """基于 asyncio.Condition 的内存队列"""

    backend_name = "memory"

    def __init__(self, policy: Optional[RetryPolicy] = None):
        super().__init__(policy)
        self._jobs: Dict[str, Job] = {}
        self._waiting: Deque[str] = deque()
        self._delayed: List[Tuple[float, str]] = []
        self._dead: List[str] = []
        self._cond = asyncio.Condition()

    async def submit(self, order_id: str, payload: Dict[str, Any]) -> bool:
        async with self._cond:
            if order_id in self._jobs:
                logger.info(f"Job {order_id} already exists ({self._jobs[order_id].state.value}), skipped")
                return False

            self._jobs[order_id] = self._new_job(order_id, payload)
            self._waiting.append(order_id)
            self._cond.notify()
            return True

    def _promote_due(self, now: float) -> None:
        """延迟到期的任务转为等待"""
        while self._delayed and self._delayed[0][0] <= now:
            _, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if job is not None and job.state is JobState.DELAYED:
                job.state = JobState.WAITING
                self._waiting.append(job_id)

    async def dequeue(self, timeout: float = 1.0) -> Optional[Job]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with self._cond:
            while True:
                self._promote_due(time.time())

                if self._waiting:
                    job = self._jobs[self._waiting.popleft()]
                    job.state = JobState.ACTIVE
                    return job

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None

                wait = remaining
                if self._delayed:
                    wait = min(wait, max(0.0, self._delayed[0][0] - time.time()))

                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass

    async def complete(self, job: Job) -> None:
        async with self._cond:
            self._jobs.pop(job.id, None)

    async def fail(self, job: Job, error: BaseException) -> FailureOutcome:
        async with self._cond:
            outcome = self._apply_failure(job, error)
            failed = outcome.job
            self._jobs[failed.id] = failed

            if outcome.retry_scheduled:
                heapq.heappush(self._delayed, (failed.ready_at, failed.id))
                self._cond.notify()
            else:
                self._dead.append(failed.id)

            return outcome

    async def dead_letters(self) -> List[Job]:
        async with self._cond:
            return [self._jobs[job_id] for job_id in self._dead if job_id in self._jobs]

    async def requeue_dead(self, order_id: str) -> bool:
        async with self._cond:
            job = self._jobs.get(order_id)
            if job is None or job.state is not JobState.DEAD:
                return False

            self._dead.remove(order_id)
            job.attempts_made = 0
            job.last_error = None
            job.state = JobState.WAITING
            self._waiting.append(order_id)
            self._cond.notify()
            return True

    async def stats(self) -> Dict[str, int]:
        async with self._cond:
            counts = {state.value: 0 for state in JobState}
            for job in self._jobs.values():
                counts[job.state.value] += 1
            return counts
