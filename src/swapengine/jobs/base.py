"""
任务队列契约

- submit 以订单 ID 为去重键: 同一 ID 处于等待/延迟/执行/死信状态时不会重复创建
- fail 按指数退避重新排队, 次数耗尽后进入死信
- complete 删除任务, 之后同一 ID 可以再次提交
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from swapengine.core.exceptions import DeadLettered


class JobState(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    DEAD = "dead"


@dataclass
class RetryPolicy:
    """重试策略: attempt n 失败后等待 base * 2^(n-1) 毫秒"""
    max_attempts: int = 3
    backoff_base_ms: int = 1000

    def delay_for(self, attempts_made: int) -> float:
        """第 attempts_made 次失败后的等待秒数"""
        return self.backoff_base_ms * (2 ** max(0, attempts_made - 1)) / 1000.0


@dataclass
class Job:
    """队列任务 (订单 ID 即任务 ID)"""
    id: str
    payload: Dict[str, Any]
    attempts_made: int = 0
    max_attempts: int = 3
    state: JobState = JobState.WAITING
    ready_at: float = 0.0
    created_at: float = field(default_factory=time.time)
    last_error: Optional[str] = None

    @property
    def attempt(self) -> int:
        """当前投递序号 (从 1 开始)"""
        return self.attempts_made + 1

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def to_mapping(self) -> Dict[str, str]:
        """Redis Hash 编码"""
        return {
            "payload": json.dumps(self.payload),
            "attempts_made": str(self.attempts_made),
            "max_attempts": str(self.max_attempts),
            "state": self.state.value,
            "ready_at": str(self.ready_at),
            "created_at": str(self.created_at),
            "last_error": self.last_error or "",
        }

    @classmethod
    def from_mapping(cls, job_id: str, data: Dict[str, str]) -> "Job":
        return cls(
            id=job_id,
            payload=json.loads(data.get("payload") or "{}"),
            attempts_made=int(data.get("attempts_made") or 0),
            max_attempts=int(data.get("max_attempts") or 1),
            state=JobState(data.get("state") or JobState.WAITING.value),
            ready_at=float(data.get("ready_at") or 0),
            created_at=float(data.get("created_at") or 0),
            last_error=data.get("last_error") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payload": self.payload,
            "attemptsMade": self.attempts_made,
            "maxAttempts": self.max_attempts,
            "state": self.state.value,
            "readyAt": self.ready_at,
            "createdAt": self.created_at,
            "lastError": self.last_error,
        }


@dataclass
class FailureOutcome:
    """一次失败的处理结果"""
    job: Job
    retry_scheduled: bool
    delay: float = 0.0
    dead_letter: Optional[DeadLettered] = None

    @property
    def dead_lettered(self) -> bool:
        return self.dead_letter is not None


class JobQueue(ABC):
    """持久任务队列"""

    backend_name = "abstract"

    def __init__(self, policy: Optional[RetryPolicy] = None):
        self.policy = policy or RetryPolicy()

    async def connect(self) -> None:
        """连接后端"""

    async def close(self) -> None:
        """关闭后端连接"""

    def _new_job(self, order_id: str, payload: Dict[str, Any]) -> Job:
        return Job(id=order_id, payload=payload, max_attempts=self.policy.max_attempts)

    def _apply_failure(self, job: Job, error: BaseException) -> FailureOutcome:
        """
        计算失败后的任务 (不涉及存储)

        返回的 outcome.job 是副本, 原 job 不变, 存储失败时可以原样重试 fail()。
        """
        job = replace(job, attempts_made=job.attempts_made + 1, last_error=str(error))

        if job.attempts_made < job.max_attempts:
            delay = self.policy.delay_for(job.attempts_made)
            job.state = JobState.DELAYED
            job.ready_at = time.time() + delay
            return FailureOutcome(job=job, retry_scheduled=True, delay=delay)

        job.state = JobState.DEAD
        job.ready_at = 0.0
        return FailureOutcome(
            job=job,
            retry_scheduled=False,
            dead_letter=DeadLettered(job.id, job.attempts_made, job.last_error),
        )

    @abstractmethod
    async def submit(self, order_id: str, payload: Dict[str, Any]) -> bool:
        """提交任务, 重复 ID 返回 False"""

    @abstractmethod
    async def dequeue(self, timeout: float = 1.0) -> Optional[Job]:
        """取出下一个就绪任务, 超时返回 None"""

    @abstractmethod
    async def complete(self, job: Job) -> None:
        """任务成功, 删除"""

    @abstractmethod
    async def fail(self, job: Job, error: BaseException) -> FailureOutcome:
        """任务失败, 重试或进入死信"""

    @abstractmethod
    async def dead_letters(self) -> List[Job]:
        """死信任务列表"""

    @abstractmethod
    async def requeue_dead(self, order_id: str) -> bool:
        """手动重新投递死信任务 (重置尝试次数)"""

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        """各状态任务数"""
