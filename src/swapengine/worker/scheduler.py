"""
Worker 调度器

固定数量的执行槽位, 每个槽位循环:
    限流额度 -> 出队 -> 执行流水线 -> complete / fail

槽位之间互不协调, 同一订单不会并发执行由队列去重保证。
stop() 停止出队并等待在途任务完成。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from swapengine import metrics
from swapengine.core.exceptions import DeadLettered
from swapengine.jobs.base import Job, JobQueue
from swapengine.order.pipeline import OrderPipeline

from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

DeadLetterCallback = Callable[[Job, DeadLettered], Awaitable[None]]

# complete / fail 回报队列的最大尝试次数
REPORT_ATTEMPTS = 3


@dataclass
class SchedulerStats:
    """调度统计"""
    completed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    in_flight: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "completed": self.completed,
            "retried": self.retried,
            "deadLettered": self.dead_lettered,
            "inFlight": self.in_flight,
        }


class WorkerScheduler:
    """有界并发的任务调度器"""

    def __init__(
        self,
        queue: JobQueue,
        pipeline: OrderPipeline,
        concurrency: int = 10,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        poll_interval: float = 1.0,
        on_dead_letter: Optional[DeadLetterCallback] = None,
    ):
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.poll_interval = poll_interval
        self._on_dead_letter = on_dead_letter

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self.stats = SchedulerStats()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动所有槽位"""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._slot_loop(slot), name=f"worker-slot-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(
            f"Worker started: concurrency={self.concurrency}, "
            f"limit={self.rate_limiter.max_jobs}/{self.rate_limiter.window_seconds:g}s, "
            f"queue={self.queue.backend_name}"
        )

    async def stop(self) -> None:
        """停止出队, 等待在途任务完成"""
        if not self._running:
            return
        self._running = False
        logger.info(f"Worker stopping, waiting for {self.stats.in_flight} in-flight jobs")
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker stopped")

    async def _slot_loop(self, slot: int) -> None:
        """单个槽位循环"""
        while self._running:
            granted_at = await self.rate_limiter.acquire()
            if not self._running:
                self.rate_limiter.refund(granted_at)
                break

            try:
                job = await self.queue.dequeue(timeout=self.poll_interval)
            except Exception as e:
                self.rate_limiter.refund(granted_at)
                logger.error(f"[slot {slot}] Dequeue error: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            if job is None:
                self.rate_limiter.refund(granted_at)
                continue

            try:
                await self.process(job)
            except Exception as e:
                # 队列回报失败 (如 Redis 断开), 槽位继续运行
                logger.error(f"[slot {slot}] Failed to report job {job.id}: {e}")

    async def process(self, job: Job) -> bool:
        """执行一个任务并回报队列, 返回是否成功"""
        logger.info(f"Job picked up: {job.id} (attempt {job.attempt}/{job.max_attempts})")
        self.stats.in_flight += 1
        metrics.JOBS_IN_FLIGHT.inc()
        try:
            await self.pipeline.run(job)
        except Exception as e:
            await self._handle_failure(job, e)
            return False
        else:
            await self._report(self.queue.complete, job)
            self.stats.completed += 1
            metrics.record_job("completed")
            logger.info(f"Job complete: {job.id}")
            return True
        finally:
            self.stats.in_flight -= 1
            metrics.JOBS_IN_FLIGHT.dec()

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        outcome = await self._report(self.queue.fail, job, error)
        failed = outcome.job

        if outcome.retry_scheduled:
            self.stats.retried += 1
            metrics.record_job("retried")
            logger.warning(
                f"Job {job.id} failed (attempt {failed.attempts_made}/{failed.max_attempts}): {error}; "
                f"retrying in {outcome.delay:.1f}s"
            )
            return

        self.stats.dead_lettered += 1
        metrics.record_job("dead_lettered")
        logger.error(f"Job {job.id} dead-lettered: {outcome.dead_letter}")

        if self._on_dead_letter is not None:
            try:
                await self._on_dead_letter(failed, outcome.dead_letter)
            except Exception as e:
                logger.error(f"Dead-letter callback error: {e}")

    async def _report(self, action: Callable[..., Awaitable[Any]], job: Job, *args: Any) -> Any:
        """回报队列 (complete / fail), 失败时间隔 poll_interval 重试"""
        for attempt in range(1, REPORT_ATTEMPTS + 1):
            try:
                return await action(job, *args)
            except Exception as e:
                if attempt == REPORT_ATTEMPTS:
                    logger.error(f"Giving up reporting job {job.id} after {attempt} tries: {e}")
                    raise
                logger.warning(f"Reporting job {job.id} failed ({attempt}/{REPORT_ATTEMPTS}): {e}")
                await asyncio.sleep(self.poll_interval)

    def snapshot(self) -> Dict[str, Any]:
        """健康检查用"""
        return {
            "running": self._running,
            "concurrency": self.concurrency,
            "rateLimit": {
                "max": self.rate_limiter.max_jobs,
                "windowSeconds": self.rate_limiter.window_seconds,
                "available": self.rate_limiter.available,
            },
            **self.stats.to_dict(),
        }
