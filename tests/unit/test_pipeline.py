"""
测试订单流水线: 状态顺序、持久化字段与失败事件
"""

import random

import pytest

from swapengine.core.exceptions import RoutingError, SlippageExceeded
from swapengine.jobs.base import Job
from swapengine.order.models import Order, OrderRequest, OrderStatus
from swapengine.order.pipeline import OrderPipeline
from swapengine.order.router import VenueRouter
from swapengine.order.store import OrderStore
from swapengine.server.broadcaster import StatusBroadcaster
from swapengine.venue.simulated import SimulatedVenueProvider


class FakeSink:
    def __init__(self):
        self.closed = False
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True

    @property
    def statuses(self):
        return [event["status"] for event in self.sent]


async def _setup(tmp_path, variance=(1.0, 1.0), venues=None, order_id="order-1"):
    provider = SimulatedVenueProvider(
        latency_scale=0,
        execution_variance=variance,
        rng=random.Random(1),
    )
    store = OrderStore(str(tmp_path / "orders.db"))
    broadcaster = StatusBroadcaster()
    sink = FakeSink()
    await broadcaster.bind(order_id, sink)

    pipeline = OrderPipeline(
        router=VenueRouter(provider, venues=venues),
        provider=provider,
        store=store,
        broadcaster=broadcaster,
        submit_delay=0,
    )

    request = OrderRequest(token_in="SOL", token_out="USDC", amount_in=1.0, slippage=0.01)
    await store.insert(Order.from_request(order_id, request))
    job = Job(id=order_id, payload={"orderId": order_id, "order": request.to_dict()}, max_attempts=3)
    return pipeline, store, sink, job


@pytest.mark.asyncio
async def test_successful_attempt_emits_full_status_sequence(tmp_path):
    pipeline, store, sink, job = await _setup(tmp_path)

    result = await pipeline.run(job)

    assert sink.statuses == ["pending", "routing", "building", "submitted", "confirmed"]

    routing = sink.sent[1]
    assert routing["message"].startswith("Best route found: ")
    assert routing["data"]["chosen"]["dex"] in ("raydium", "meteora")
    assert len(routing["data"]["quotes"]) == 2

    confirmed = sink.sent[-1]
    assert confirmed["txHash"] == result.tx_hash
    assert confirmed["dex"] == result.venue
    assert "error" not in confirmed

    order = await store.get("order-1")
    assert order.status is OrderStatus.CONFIRMED
    assert order.tx_hash == result.tx_hash
    assert order.executed_price == pytest.approx(result.executed_price)
    assert order.error is None
    assert order.attempts == 1


@pytest.mark.asyncio
async def test_slippage_failure_is_persisted_and_broadcast(tmp_path):
    pipeline, store, sink, job = await _setup(tmp_path, variance=(0.985, 0.985))

    with pytest.raises(SlippageExceeded):
        await pipeline.run(job)

    assert sink.statuses == ["pending", "routing", "building", "submitted", "failed"]

    failed = sink.sent[-1]
    assert failed["error"].startswith("Slippage Exceeded")
    assert failed["attempt"] == 1
    assert failed["maxAttempts"] == 3
    assert failed["final"] is False
    assert "txHash" not in failed

    order = await store.get("order-1")
    assert order.status is OrderStatus.FAILED
    assert order.error.startswith("Slippage Exceeded")
    assert order.tx_hash is None
    assert order.dex is None


@pytest.mark.asyncio
async def test_last_attempt_failure_is_final(tmp_path):
    pipeline, _, sink, job = await _setup(tmp_path, variance=(0.9, 0.9))
    job.attempts_made = 2

    with pytest.raises(SlippageExceeded):
        await pipeline.run(job)

    assert sink.sent[0]["attempt"] == 3
    assert sink.sent[-1]["final"] is True


@pytest.mark.asyncio
async def test_routing_failure_skips_later_stages(tmp_path):
    pipeline, store, sink, job = await _setup(tmp_path, venues=["orca"])

    with pytest.raises(RoutingError):
        await pipeline.run(job)

    assert sink.statuses == ["pending", "failed"]
    assert (await store.get("order-1")).status is OrderStatus.FAILED


@pytest.mark.asyncio
async def test_retry_clears_previous_error(tmp_path):
    pipeline, store, sink, job = await _setup(tmp_path, variance=(0.985, 0.985))

    with pytest.raises(SlippageExceeded):
        await pipeline.run(job)
    assert (await store.get("order-1")).error is not None

    pipeline.provider.execution_variance = (1.0, 1.0)
    job.attempts_made = 1
    await pipeline.run(job)

    order = await store.get("order-1")
    assert order.status is OrderStatus.CONFIRMED
    assert order.error is None
    assert order.attempts == 2
    # 重试从 pending 重新开始
    assert sink.statuses[5:] == ["pending", "routing", "building", "submitted", "confirmed"]


@pytest.mark.asyncio
async def test_no_subscriber_does_not_block_execution(tmp_path):
    pipeline, store, sink, job = await _setup(tmp_path)
    pipeline.broadcaster.unbind("order-1", sink)

    await pipeline.run(job)

    assert sink.sent == []
    assert (await store.get("order-1")).status is OrderStatus.CONFIRMED
