"""
测试状态广播: 单订阅者替换与尽力推送
"""

import pytest

from swapengine.server.broadcaster import StatusBroadcaster


class FakeSink:
    def __init__(self, fail: bool = False):
        self.closed = False
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(data)

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_publish_without_subscriber_is_dropped():
    broadcaster = StatusBroadcaster()
    assert await broadcaster.publish("order-1", {"status": "pending"}) is False


@pytest.mark.asyncio
async def test_second_subscriber_replaces_and_closes_first():
    broadcaster = StatusBroadcaster()
    first, second = FakeSink(), FakeSink()

    await broadcaster.bind("order-1", first)
    await broadcaster.bind("order-1", second)

    assert first.closed is True
    assert broadcaster.get("order-1") is second
    assert broadcaster.subscriber_count == 1

    await broadcaster.publish("order-1", {"status": "routing"})
    assert first.sent == []
    assert second.sent == [{"status": "routing"}]


@pytest.mark.asyncio
async def test_unbind_ignores_stale_subscriber():
    broadcaster = StatusBroadcaster()
    first, second = FakeSink(), FakeSink()

    await broadcaster.bind("order-1", first)
    await broadcaster.bind("order-1", second)

    # 旧连接的关闭回调不能移除新连接
    assert broadcaster.unbind("order-1", first) is False
    assert broadcaster.get("order-1") is second

    assert broadcaster.unbind("order-1", second) is True
    assert broadcaster.get("order-1") is None


@pytest.mark.asyncio
async def test_send_failure_and_closed_sink_do_not_raise():
    broadcaster = StatusBroadcaster()

    await broadcaster.bind("order-1", FakeSink(fail=True))
    assert await broadcaster.publish("order-1", {"status": "building"}) is False

    closed = FakeSink()
    closed.closed = True
    await broadcaster.bind("order-2", closed)
    assert await broadcaster.publish("order-2", {"status": "building"}) is False
    assert closed.sent == []


@pytest.mark.asyncio
async def test_close_all_closes_every_subscriber():
    broadcaster = StatusBroadcaster()
    sinks = [FakeSink() for _ in range(3)]
    for i, sink in enumerate(sinks):
        await broadcaster.bind(f"order-{i}", sink)

    await broadcaster.close_all()

    assert all(sink.closed for sink in sinks)
    assert broadcaster.subscriber_count == 0


class LoggedSink(FakeSink):
    """把 send / close 记录到共享日志, 用于检查先后顺序"""

    def __init__(self, name, log):
        super().__init__()
        self.name = name
        self.log = log

    async def send_json(self, data):
        self.log.append((self.name, "send", data.get("status")))
        await super().send_json(data)

    async def close(self):
        self.log.append((self.name, "close", None))
        await super().close()


@pytest.mark.asyncio
async def test_previous_subscriber_closed_before_greeting():
    broadcaster = StatusBroadcaster()
    log = []
    first, second = LoggedSink("ws1", log), LoggedSink("ws2", log)
    greeting = {"status": "connected", "orderId": "order-1"}

    await broadcaster.bind("order-1", first, greeting=greeting)
    await broadcaster.bind("order-1", second, greeting=greeting)

    assert log == [
        ("ws1", "send", "connected"),
        ("ws1", "close", None),
        ("ws2", "send", "connected"),
    ]
    assert broadcaster.get("order-1") is second


@pytest.mark.asyncio
async def test_bind_yields_to_subscriber_registered_during_greeting():
    broadcaster = StatusBroadcaster()
    winner = FakeSink()

    class SlowSink(FakeSink):
        async def send_json(self, data):
            # 发送 greeting 期间另一个连接完成了绑定
            await broadcaster.bind("order-1", winner)
            await super().send_json(data)

    loser = SlowSink()
    await broadcaster.bind("order-1", loser, greeting={"status": "connected"})

    assert loser.closed is True
    assert winner.closed is False
    assert broadcaster.get("order-1") is winner


class FakeRelay:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, order_id, event):
        if self.fail:
            raise ConnectionError("redis down")
        self.sent.append((order_id, event))


@pytest.mark.asyncio
async def test_publish_goes_through_relay_and_deliver_is_local():
    relay = FakeRelay()
    broadcaster = StatusBroadcaster(relay)
    sink = FakeSink()
    await broadcaster.bind("order-1", sink)

    assert await broadcaster.publish("order-1", {"status": "routing"}) is True
    # 事件只经 relay 发出, 由监听器回调 deliver 推送
    assert relay.sent == [("order-1", {"status": "routing"})]
    assert sink.sent == []

    assert await broadcaster.deliver("order-1", {"status": "routing"}) is True
    assert sink.sent == [{"status": "routing"}]


@pytest.mark.asyncio
async def test_relay_failure_is_not_raised():
    broadcaster = StatusBroadcaster(FakeRelay(fail=True))
    assert await broadcaster.publish("order-1", {"status": "routing"}) is False
