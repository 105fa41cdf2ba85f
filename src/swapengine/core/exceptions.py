"""
SwapEngine 自定义异常

层次化的异常类，区分可重试的流水线错误与终态错误。
"""

from typing import Optional


class SwapEngineError(Exception):
    """SwapEngine 基础异常类"""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(SwapEngineError):
    """请求参数验证错误 (不入队, 不重试)"""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class RoutingError(SwapEngineError):
    """没有可用的报价场所"""

    def __init__(self, message: str, venues: Optional[list] = None):
        super().__init__(message, code="ROUTING_ERROR")
        self.venues = venues or []


class SlippageExceeded(SwapEngineError):
    """成交价低于滑点下限"""

    def __init__(
        self,
        quoted_price: float,
        executed_price: float,
        min_price: float,
        venue: str = "",
    ):
        super().__init__(
            f"Slippage Exceeded: Got {executed_price:.4f}, Min {min_price:.4f}",
            code="SLIPPAGE_EXCEEDED",
        )
        self.quoted_price = quoted_price
        self.executed_price = executed_price
        self.min_price = min_price
        self.venue = venue


class ProviderError(SwapEngineError):
    """报价/结算提供方的意外错误"""

    def __init__(self, message: str, venue: str = ""):
        super().__init__(message, code="PROVIDER_ERROR")
        self.venue = venue


class RateLimitError(ProviderError):
    """场所返回限流响应"""

    def __init__(self, message: str, venue: str = "", retry_after: float = 0):
        super().__init__(message, venue=venue)
        self.code = "RATE_LIMIT_ERROR"
        self.retry_after = retry_after


class DeadLettered(SwapEngineError):
    """重试次数耗尽, 任务进入死信"""

    def __init__(self, order_id: str, attempts: int, last_error: str = ""):
        super().__init__(
            f"Order {order_id} dead-lettered after {attempts} attempts: {last_error}",
            code="DEAD_LETTERED",
        )
        self.order_id = order_id
        self.attempts = attempts
        self.last_error = last_error


class InvalidTransitionError(SwapEngineError):
    """订单状态回退或跳出终态"""

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            f"Order {order_id}: cannot move from {current} to {target}",
            code="INVALID_TRANSITION",
        )
        self.order_id = order_id
        self.current = current
        self.target = target


class QueueError(SwapEngineError):
    """任务队列后端错误"""

    def __init__(self, message: str, backend: str = ""):
        super().__init__(message, code="QUEUE_ERROR")
        self.backend = backend
