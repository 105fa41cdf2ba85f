"""
订单执行流水线

单个任务按顺序推进:
    pending -> routing -> building -> submitted -> confirmed | failed

每个阶段先持久化、再广播, 两者都完成后才进入下一阶段。
任何阶段抛出异常都会记录 failed 并重新抛出, 由队列决定重试或死信。
重试总是从 pending 重新开始, 不做部分回滚。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from swapengine import metrics
from swapengine.core.exceptions import InvalidTransitionError
from swapengine.jobs.base import Job
from swapengine.server.broadcaster import StatusBroadcaster
from swapengine.venue.base import ExecutionResult, VenueProvider

from .models import OrderRequest, OrderStatus
from .router import VenueRouter
from .store import OrderStore

logger = logging.getLogger(__name__)


@dataclass
class AttemptState:
    """一次投递内的状态跟踪"""
    order_id: str
    status: Optional[OrderStatus] = None

    def advance(self, target: OrderStatus) -> None:
        if self.status is not None and not self.status.can_advance_to(target):
            raise InvalidTransitionError(self.order_id, self.status.value, target.value)
        self.status = target

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal


class OrderPipeline:
    """
    订单状态机

    依赖:
    - router: 报价与选路
    - provider: 执行 swap
    - store: 持久化 (部分字段更新)
    - broadcaster: 推送状态给订阅者
    """

    def __init__(
        self,
        router: VenueRouter,
        provider: VenueProvider,
        store: OrderStore,
        broadcaster: StatusBroadcaster,
        submit_delay: float = 0.5,
        wrap_tokens: Iterable[str] = ("SOL",),
    ):
        self.router = router
        self.provider = provider
        self.store = store
        self.broadcaster = broadcaster
        self.submit_delay = submit_delay
        self.wrap_tokens = {t.upper() for t in wrap_tokens}

    async def run(self, job: Job) -> ExecutionResult:
        """执行一个任务, 成功返回成交结果, 失败抛出异常"""
        order_id = job.payload.get("orderId") or job.id
        state = AttemptState(order_id)

        try:
            request = OrderRequest.from_dict(job.payload["order"])
            logger.info(
                f"[{order_id}] Attempt {job.attempt}/{job.max_attempts}: "
                f"{request.amount_in} {request.token_in} -> {request.token_out}"
            )

            # 1. PENDING -> ROUTING
            self._advance(state, OrderStatus.PENDING)
            await self._publish(order_id, {
                "status": OrderStatus.PENDING.value,
                "message": "Order received and queued",
                "attempt": job.attempt,
            })
            await self.store.update(
                order_id, status=OrderStatus.ROUTING, attempts=job.attempt, error=None
            )
            self._advance(state, OrderStatus.ROUTING)

            # 2. ROUTING
            with metrics.StageTimer("routing"):
                decision = await self.router.route(
                    request.token_in, request.token_out, request.amount_in
                )
            chosen = decision.chosen
            logger.info(f"[{order_id}] Chosen: {chosen.venue} @ {chosen.price:.4f}")
            await self._publish(order_id, {
                "status": OrderStatus.ROUTING.value,
                "message": f"Best route found: {chosen.venue}",
                "data": decision.to_dict(),
            })

            # 3. BUILDING
            await self.store.update(order_id, status=OrderStatus.BUILDING)
            self._advance(state, OrderStatus.BUILDING)
            await self._publish(order_id, {
                "status": OrderStatus.BUILDING.value,
                "message": "Constructing transaction...",
            })
            if request.token_in.upper() in self.wrap_tokens:
                logger.info(f"[{order_id}] Native {request.token_in} detected, wrapping before swap")

            # 4. SUBMITTED
            if self.submit_delay > 0:
                await asyncio.sleep(self.submit_delay)
            await self.store.update(order_id, status=OrderStatus.SUBMITTED)
            self._advance(state, OrderStatus.SUBMITTED)
            await self._publish(order_id, {
                "status": OrderStatus.SUBMITTED.value,
                "message": "Transaction sent to network",
            })

            # 5. EXECUTION
            with metrics.StageTimer("execution"):
                result = await self.provider.execute_swap(
                    chosen.venue,
                    amount_in=request.amount_in,
                    slippage=request.slippage,
                    price=chosen.price,
                    token_in=request.token_in,
                    token_out=request.token_out,
                )

            await self.store.update(
                order_id,
                status=OrderStatus.CONFIRMED,
                dex=result.venue,
                tx_hash=result.tx_hash,
                executed_price=result.executed_price,
                error=None,
            )
            self._advance(state, OrderStatus.CONFIRMED)
            await self._publish(order_id, {
                "status": OrderStatus.CONFIRMED.value,
                "txHash": result.tx_hash,
                "executedPrice": result.executed_price,
                "dex": result.venue,
            })

            logger.info(f"[{order_id}] Swap confirmed. Tx: {result.tx_hash}")
            return result

        except Exception as e:
            logger.error(f"[{order_id}] Error on attempt {job.attempt}: {e}")
            await self._fail(state, job, str(e) or e.__class__.__name__)
            raise

    def _advance(self, state: AttemptState, target: OrderStatus) -> None:
        state.advance(target)
        metrics.record_status(target.value)

    async def _publish(self, order_id: str, event: Dict[str, Any]) -> None:
        await self.broadcaster.publish(order_id, event)

    async def _fail(self, state: AttemptState, job: Job, error: str) -> None:
        """记录失败: 持久化 + 广播 (终态之后不再改写)"""
        if state.is_terminal:
            return

        order_id = state.order_id
        try:
            await self.store.update(
                order_id,
                status=OrderStatus.FAILED,
                error=error,
                dex=None,
                tx_hash=None,
                executed_price=None,
            )
        except Exception as store_error:
            logger.error(f"[{order_id}] Failed to persist failure: {store_error}")

        self._advance(state, OrderStatus.FAILED)
        await self._publish(order_id, {
            "status": OrderStatus.FAILED.value,
            "error": error,
            "attempt": job.attempt,
            "maxAttempts": job.max_attempts,
            "final": job.is_final_attempt,
        })
