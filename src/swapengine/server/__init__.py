"""Status fan-out and HTTP / WebSocket server."""

from .broadcaster import StatusBroadcaster, StatusRelay, StatusSink
from .relay import RedisStatusRelay


# OrderServer 依赖流水线, 延迟导入避免循环依赖
def __getattr__(name):
    if name == "OrderServer":
        from .app import OrderServer
        return OrderServer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "StatusBroadcaster",
    "StatusRelay",
    "StatusSink",
    "RedisStatusRelay",
    "OrderServer",
]
