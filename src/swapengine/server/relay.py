"""
Redis 状态事件转发

Worker 进程与 HTTP 服务进程分离时, 流水线事件经 Redis Pub/Sub 发布,
服务进程订阅后交给本地 StatusBroadcaster 推送给 WebSocket 订阅者。

Channel: {prefix}:{name}:events
Message: {"orderId": ..., "event": {...}}
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from .broadcaster import StatusBroadcaster

logger = logging.getLogger(__name__)


class RedisStatusRelay:
    """基于 Redis Pub/Sub 的事件转发"""

    def __init__(self, redis: aioredis.Redis, channel: str):
        self.redis = redis
        self.channel = channel
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    async def send(self, order_id: str, event: Dict[str, Any]) -> None:
        """发布事件 (同一连接上按发送顺序到达)"""
        await self.redis.publish(self.channel, json.dumps({"orderId": order_id, "event": event}))

    async def start(self, broadcaster: StatusBroadcaster) -> None:
        """订阅 channel, 收到的事件交给 broadcaster.deliver"""
        if self._task is not None:
            return
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._listen(broadcaster), name="status-relay")
        logger.info(f"Status relay subscribed to {self.channel}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None

    async def _listen(self, broadcaster: StatusBroadcaster) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisConnectionError as e:
                logger.error(f"Status relay connection error: {e}")
                await asyncio.sleep(1.0)
                continue

            if message is None or message.get("type") != "message":
                continue

            try:
                data = json.loads(message["data"])
                order_id = data["orderId"]
                event = data["event"]
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Dropping malformed status message: {e}")
                continue

            await broadcaster.deliver(order_id, event)
