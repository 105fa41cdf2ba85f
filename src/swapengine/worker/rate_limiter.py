"""
全局吞吐限制器

滑动窗口计数: 任意 window_seconds 内最多 max_jobs 个任务开始执行。
Worker 在出队前获取额度, 没取到任务时退还。
"""

import asyncio
import time
from collections import deque
from typing import Deque


class SlidingWindowRateLimiter:
    """
    滑动窗口限流器

    默认: 100 个任务 / 60 秒
    """

    def __init__(self, max_jobs: int = 100, window_seconds: float = 60.0):
        if max_jobs <= 0:
            raise ValueError("max_jobs must be positive")
        self.max_jobs = max_jobs
        self.window_seconds = window_seconds

        self._grants: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """获取一个额度, 返回授予时间戳 (用于退还)"""
        async with self._lock:
            now = time.monotonic()
            self._cleanup(now)

            # 等待最早的记录滑出窗口
            while len(self._grants) >= self.max_jobs:
                sleep_time = self._grants[0] + self.window_seconds - now
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                now = time.monotonic()
                self._cleanup(now)

            self._grants.append(now)
            return now

    def refund(self, granted_at: float) -> None:
        """退还未使用的额度"""
        try:
            self._grants.remove(granted_at)
        except ValueError:
            pass

    def _cleanup(self, now: float) -> None:
        """清理窗口外记录"""
        cutoff = now - self.window_seconds
        while self._grants and self._grants[0] <= cutoff:
            self._grants.popleft()

    @property
    def current_usage(self) -> int:
        """窗口内已使用额度"""
        self._cleanup(time.monotonic())
        return len(self._grants)

    @property
    def available(self) -> int:
        """剩余额度"""
        return self.max_jobs - self.current_usage
