"""
SwapEngine

异步 swap 订单执行引擎: 订单入队、场所路由、模拟执行与实时状态推送。
"""

__version__ = "1.0.0"
__author__ = "SwapEngine Team"

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "order":
        from . import order
        return order
    elif name == "venue":
        from . import venue
        return venue
    elif name == "jobs":
        from . import jobs
        return jobs
    elif name == "worker":
        from . import worker
        return worker
    elif name == "server":
        from . import server
        return server
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "__version__",
    "order",
    "venue",
    "jobs",
    "worker",
    "server",
]
