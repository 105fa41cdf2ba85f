"""
订单状态广播

每个订单 ID 最多一个在线订阅者:
- bind: 先关闭并移除旧连接, 再发送欢迎消息, 最后登记新连接
- publish: 尽力而为, 无订阅者或连接已关闭时直接丢弃, 发送异常只记录日志
- 不缓存也不回放历史事件

配置了 relay 时 (多进程部署), publish 只交给 relay, 由服务进程的
监听器收到后再调用 deliver 推送给本地订阅者。
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from swapengine import metrics

logger = logging.getLogger(__name__)


class StatusSink(Protocol):
    """状态推送目标 (aiohttp.web.WebSocketResponse 满足此协议)"""

    @property
    def closed(self) -> bool: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self) -> Any: ...


class StatusRelay(Protocol):
    """跨进程事件转发"""

    async def send(self, order_id: str, event: Dict[str, Any]) -> None: ...


class StatusBroadcaster:
    """订单状态广播器"""

    def __init__(self, relay: Optional[StatusRelay] = None):
        self._sinks: Dict[str, StatusSink] = {}
        self.relay = relay

    async def bind(
        self,
        order_id: str,
        sink: StatusSink,
        greeting: Optional[Dict[str, Any]] = None,
    ) -> None:
        """绑定订阅者: 关闭旧订阅者 -> 发送 greeting -> 登记"""
        # 关闭旧连接期间可能有并发 bind 登记了别的连接, 循环直到位置空出
        while True:
            previous = self._sinks.pop(order_id, None)
            if previous is None or previous is sink:
                break
            await self._close_sink(order_id, previous)

        if greeting is not None:
            await sink.send_json(greeting)
            # 发送期间又有新订阅者抢占时, 本连接让位
            current = self._sinks.get(order_id)
            if current is not None and current is not sink:
                await self._close_sink(order_id, sink)
                return

        self._sinks[order_id] = sink
        metrics.WS_SUBSCRIBERS.set(len(self._sinks))
        logger.debug(f"Subscriber bound for order {order_id}")

    def unbind(self, order_id: str, sink: StatusSink) -> bool:
        """连接关闭时移除 (仅当仍是当前订阅者)"""
        if self._sinks.get(order_id) is sink:
            del self._sinks[order_id]
            metrics.WS_SUBSCRIBERS.set(len(self._sinks))
            return True
        return False

    def get(self, order_id: str) -> Optional[StatusSink]:
        return self._sinks.get(order_id)

    async def publish(self, order_id: str, event: Dict[str, Any]) -> bool:
        """发布事件 (有 relay 时经 relay 转发), 返回是否送出"""
        if self.relay is None:
            return await self.deliver(order_id, event)

        try:
            await self.relay.send(order_id, event)
            return True
        except Exception as e:
            logger.warning(f"Status relay error for {order_id}: {e}")
            return False

    async def deliver(self, order_id: str, event: Dict[str, Any]) -> bool:
        """推送给本进程的订阅者, 返回是否成功送出"""
        sink = self._sinks.get(order_id)
        if sink is None or sink.closed:
            return False

        try:
            await sink.send_json(event)
            return True
        except Exception as e:
            logger.warning(f"WS send error for {order_id}: {e}")
            return False

    async def close_all(self) -> None:
        """关闭所有订阅者 (进程退出时)"""
        sinks = list(self._sinks.items())
        self._sinks.clear()
        metrics.WS_SUBSCRIBERS.set(0)
        await asyncio.gather(
            *(self._close_sink(order_id, sink) for order_id, sink in sinks)
        )

    async def _close_sink(self, order_id: str, sink: StatusSink) -> None:
        if sink.closed:
            return
        try:
            await sink.close()
        except Exception as e:
            logger.warning(f"Failed to close subscriber for {order_id}: {e}")

    @property
    def subscriber_count(self) -> int:
        return len(self._sinks)
