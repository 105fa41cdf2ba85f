"""
Redis 任务队列

Key Design ({base} = {prefix}:{name}):
- {base}:job:{id}   - Hash (payload, attempts_made, state, ...)
- {base}:wait       - List (LPUSH 入队, BRPOP 出队)
- {base}:delayed    - Sorted Set (score = 就绪时间戳)
- {base}:active     - Set (执行中)
- {base}:dead       - Sorted Set (score = 进入死信时间)
- {base}:events     - Pub/Sub channel (状态事件转发)

去重: 提交脚本原子地检查任务 Hash 是否存在并入队,
任务 Hash 存在期间同一 ID 无法再次提交。
"""

import logging
import math
import time
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

from swapengine.core.exceptions import QueueError

from .base import FailureOutcome, Job, JobQueue, JobState, RetryPolicy

logger = logging.getLogger(__name__)

# KEYS[1] = job hash, KEYS[2] = wait list; ARGV[1] = job id, ARGV[2..] = hash 字段/值
SUBMIT_SCRIPT = """
if redis.call("EXISTS", KEYS[1]) == 1 then
    return 0
end
redis.call("HSET", KEYS[1], unpack(ARGV, 2))
redis.call("LPUSH", KEYS[2], ARGV[1])
return 1
"""


class RedisJobQueue(JobQueue):
    """Redis 持久任务队列"""

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://127.0.0.1:6379",
        prefix: str = "order-engine",
        name: str = "orders",
        policy: Optional[RetryPolicy] = None,
        socket_timeout: float = 10.0,
    ):
        super().__init__(policy)
        self.redis_url = redis_url
        self.base = f"{prefix}:{name}"
        self.socket_timeout = socket_timeout
        self._redis: Optional[aioredis.Redis] = None
        self._submit_script = None

    # ========== Keys ==========

    def _job_key(self, job_id: str) -> str:
        return f"{self.base}:job:{job_id}"

    @property
    def _wait_key(self) -> str:
        return f"{self.base}:wait"

    @property
    def _delayed_key(self) -> str:
        return f"{self.base}:delayed"

    @property
    def _active_key(self) -> str:
        return f"{self.base}:active"

    @property
    def _dead_key(self) -> str:
        return f"{self.base}:dead"

    @property
    def status_channel(self) -> str:
        return f"{self.base}:events"

    # ========== 连接 ==========

    async def connect(self) -> None:
        """连接 Redis, 失败抛出 QueueError"""
        try:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
            )
            await self._redis.ping()
            self._submit_script = self._redis.register_script(SUBMIT_SCRIPT)
            logger.info(f"Job queue connected: {self.redis_url} ({self.base})")
        except Exception as e:
            if self._redis is not None:
                await self._redis.aclose()
                self._redis = None
            raise QueueError(f"Redis unavailable: {e}", backend=self.backend_name) from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise QueueError("Job queue is not connected", backend=self.backend_name)
        return self._redis

    # ========== 队列操作 ==========

    async def submit(self, order_id: str, payload: Dict[str, Any]) -> bool:
        job = self._new_job(order_id, payload)
        fields: List[str] = []
        for name, value in job.to_mapping().items():
            fields.extend((name, value))

        created = await self._submit_script(
            keys=[self._job_key(order_id), self._wait_key],
            args=[order_id, *fields],
            client=self.redis,
        )
        if not created:
            logger.info(f"Job {order_id} already exists, skipped")
            return False
        return True

    async def _promote_due(self) -> None:
        """延迟到期的任务转为等待 (ZREM 成功者负责入队)"""
        now = time.time()
        due = await self.redis.zrangebyscore(self._delayed_key, "-inf", now)

        for job_id in due:
            if not await self.redis.zrem(self._delayed_key, job_id):
                continue
            pipe = self.redis.pipeline()
            pipe.hset(self._job_key(job_id), "state", JobState.WAITING.value)
            pipe.rpush(self._wait_key, job_id)
            await pipe.execute()

    async def dequeue(self, timeout: float = 1.0) -> Optional[Job]:
        await self._promote_due()

        result = await self.redis.brpop(self._wait_key, timeout=max(1, math.ceil(timeout)))
        if result is None:
            return None

        _, job_id = result
        data = await self.redis.hgetall(self._job_key(job_id))
        if not data:
            logger.warning(f"Job {job_id} popped without a job record, dropped")
            return None

        job = Job.from_mapping(job_id, data)
        job.state = JobState.ACTIVE

        pipe = self.redis.pipeline()
        pipe.hset(self._job_key(job_id), "state", JobState.ACTIVE.value)
        pipe.sadd(self._active_key, job_id)
        await pipe.execute()
        return job

    async def complete(self, job: Job) -> None:
        pipe = self.redis.pipeline()
        pipe.delete(self._job_key(job.id))
        pipe.srem(self._active_key, job.id)
        await pipe.execute()

    async def fail(self, job: Job, error: BaseException) -> FailureOutcome:
        outcome = self._apply_failure(job, error)
        job = outcome.job
        key = self._job_key(job.id)

        pipe = self.redis.pipeline()
        pipe.hset(key, mapping={
            "attempts_made": str(job.attempts_made),
            "state": job.state.value,
            "ready_at": str(job.ready_at),
            "last_error": job.last_error or "",
        })
        pipe.srem(self._active_key, job.id)
        if outcome.retry_scheduled:
            pipe.zadd(self._delayed_key, {job.id: job.ready_at})
        else:
            pipe.zadd(self._dead_key, {job.id: time.time()})
        await pipe.execute()

        return outcome

    async def dead_letters(self) -> List[Job]:
        job_ids = await self.redis.zrange(self._dead_key, 0, -1)
        jobs = []
        for job_id in job_ids:
            data = await self.redis.hgetall(self._job_key(job_id))
            if data:
                jobs.append(Job.from_mapping(job_id, data))
        return jobs

    async def requeue_dead(self, order_id: str) -> bool:
        if not await self.redis.zrem(self._dead_key, order_id):
            return False

        pipe = self.redis.pipeline()
        pipe.hset(self._job_key(order_id), mapping={
            "attempts_made": "0",
            "state": JobState.WAITING.value,
            "ready_at": "0",
            "last_error": "",
        })
        pipe.lpush(self._wait_key, order_id)
        await pipe.execute()
        return True

    async def stats(self) -> Dict[str, int]:
        pipe = self.redis.pipeline()
        pipe.llen(self._wait_key)
        pipe.scard(self._active_key)
        pipe.zcard(self._delayed_key)
        pipe.zcard(self._dead_key)
        waiting, active, delayed, dead = await pipe.execute()
        return {
            JobState.WAITING.value: waiting,
            JobState.ACTIVE.value: active,
            JobState.DELAYED.value: delayed,
            JobState.DEAD.value: dead,
        }
