"""
测试 Redis 任务队列与状态事件转发 (需要本地 Redis, 不可达时跳过)

REDIS_URL 指定地址, 默认 redis://127.0.0.1:6379; 每个测试使用独立前缀并在结束时清理。
"""

import asyncio
import os
import uuid

import pytest

from swapengine.core.exceptions import QueueError
from swapengine.jobs import JobState, RedisJobQueue, RetryPolicy
from swapengine.server.broadcaster import StatusBroadcaster
from swapengine.server.relay import RedisStatusRelay

REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")


async def _queue(policy=None):
    prefix = f"swapengine-test-{uuid.uuid4().hex[:8]}"
    queue = RedisJobQueue(redis_url=REDIS_URL, prefix=prefix, policy=policy, socket_timeout=5.0)
    try:
        await queue.connect()
    except QueueError as e:
        pytest.skip(f"Redis not reachable: {e}")
    return queue, prefix


async def _cleanup(queue, prefix):
    keys = [key async for key in queue.redis.scan_iter(f"{prefix}*")]
    if keys:
        await queue.redis.delete(*keys)
    await queue.close()


async def _dequeue_within(queue, seconds):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while loop.time() < deadline:
        job = await queue.dequeue(timeout=1.0)
        if job is not None:
            return job
    return None


@pytest.mark.asyncio
async def test_submit_deduplicates_and_writes_full_job():
    queue, prefix = await _queue()
    try:
        assert await queue.submit("order-1", {"orderId": "order-1"}) is True
        assert await queue.submit("order-1", {"orderId": "other"}) is False

        # 脚本一次写入完整 Hash, 只入队一次
        data = await queue.redis.hgetall(f"{queue.base}:job:order-1")
        assert data["state"] == "waiting"
        assert data["attempts_made"] == "0"
        assert data["max_attempts"] == "3"
        assert '"orderId": "order-1"' in data["payload"]
        assert await queue.redis.llen(f"{queue.base}:wait") == 1

        job = await queue.dequeue(timeout=1.0)
        assert job.id == "order-1"
        assert job.payload == {"orderId": "order-1"}
        assert job.state is JobState.ACTIVE
        assert await queue.submit("order-1", {"orderId": "order-1"}) is False

        await queue.complete(job)
        assert await queue.submit("order-1", {"orderId": "order-1"}) is True
    finally:
        await _cleanup(queue, prefix)


@pytest.mark.asyncio
async def test_concurrent_submits_create_one_job():
    queue, prefix = await _queue()
    try:
        results = await asyncio.gather(
            *(queue.submit("order-1", {"orderId": "order-1"}) for _ in range(10))
        )
        assert results.count(True) == 1
        assert await queue.redis.llen(f"{queue.base}:wait") == 1
    finally:
        await _cleanup(queue, prefix)


@pytest.mark.asyncio
async def test_dequeue_times_out_when_empty():
    queue, prefix = await _queue()
    try:
        assert await queue.dequeue(timeout=1.0) is None
    finally:
        await _cleanup(queue, prefix)


@pytest.mark.asyncio
async def test_failed_job_is_delayed_then_redelivered():
    queue, prefix = await _queue(RetryPolicy(max_attempts=3, backoff_base_ms=50))
    try:
        await queue.submit("order-1", {"orderId": "order-1"})
        job = await queue.dequeue(timeout=1.0)

        outcome = await queue.fail(job, RuntimeError("quote failed"))
        assert outcome.retry_scheduled is True
        assert outcome.job.state is JobState.DELAYED
        assert (await queue.stats())["delayed"] == 1
        assert (await queue.stats())["active"] == 0

        job = await _dequeue_within(queue, 5.0)
        assert job is not None
        assert job.attempt == 2
        assert job.last_error == "quote failed"
    finally:
        await _cleanup(queue, prefix)


@pytest.mark.asyncio
async def test_exhausted_job_is_dead_lettered_and_requeueable():
    queue, prefix = await _queue(RetryPolicy(max_attempts=2, backoff_base_ms=1))
    try:
        await queue.submit("order-1", {"orderId": "order-1"})
        job = await queue.dequeue(timeout=1.0)
        await queue.fail(job, RuntimeError("first"))
        job = await _dequeue_within(queue, 5.0)

        outcome = await queue.fail(job, RuntimeError("second"))
        assert outcome.dead_lettered
        assert outcome.dead_letter.attempts == 2

        dead = await queue.dead_letters()
        assert [job.id for job in dead] == ["order-1"]
        assert dead[0].last_error == "second"
        # 死信期间仍然去重
        assert await queue.submit("order-1", {"orderId": "order-1"}) is False

        assert await queue.requeue_dead("order-1") is True
        assert await queue.requeue_dead("order-1") is False
        job = await queue.dequeue(timeout=1.0)
        assert job.attempt == 1
        assert job.last_error is None
    finally:
        await _cleanup(queue, prefix)


@pytest.mark.asyncio
async def test_stats_counts_each_state():
    queue, prefix = await _queue(RetryPolicy(max_attempts=3, backoff_base_ms=60000))
    try:
        for i in range(3):
            await queue.submit(f"order-{i}", {"orderId": f"order-{i}"})
        active = await queue.dequeue(timeout=1.0)
        delayed = await queue.dequeue(timeout=1.0)
        await queue.fail(delayed, RuntimeError("boom"))

        assert await queue.stats() == {"waiting": 1, "active": 1, "delayed": 1, "dead": 0}
        await queue.complete(active)
        assert (await queue.stats())["active"] == 0
    finally:
        await _cleanup(queue, prefix)


class FakeSink:
    def __init__(self):
        self.closed = False
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_status_relay_delivers_events_across_broadcasters():
    queue, prefix = await _queue()
    # Worker 进程的广播器只发布, 服务进程的广播器订阅并推送
    worker_side = StatusBroadcaster(RedisStatusRelay(queue.redis, queue.status_channel))
    listener = RedisStatusRelay(queue.redis, queue.status_channel)
    server_side = StatusBroadcaster(listener)
    sink = FakeSink()
    try:
        await server_side.bind("order-1", sink)
        await listener.start(server_side)

        assert await worker_side.publish("order-1", {"orderId": "order-1", "status": "routing"}) is True
        await worker_side.publish("order-1", {"orderId": "order-1", "status": "building"})

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 5.0
        while len(sink.sent) < 2 and loop.time() < deadline:
            await asyncio.sleep(0.05)

        assert [event["status"] for event in sink.sent] == ["routing", "building"]
    finally:
        await listener.stop()
        await _cleanup(queue, prefix)
