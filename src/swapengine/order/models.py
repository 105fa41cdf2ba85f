"""
订单数据模型

- OrderRequest: 客户端提交的 swap 请求 (入口校验)
- Order: 持久化的订单生命周期记录
- OrderStatus: 严格递进的状态机
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from swapengine.core.exceptions import ValidationError

DEFAULT_SLIPPAGE = 0.01


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"
    SNIPER = "sniper"


class OrderStatus(Enum):
    """订单状态: pending < routing < building < submitted < {confirmed, failed}"""
    PENDING = "pending"
    ROUTING = "routing"
    BUILDING = "building"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)

    def can_advance_to(self, target: "OrderStatus") -> bool:
        """同一次尝试内只允许向前推进; 任何非终态都可以直接失败"""
        if self.is_terminal:
            return False
        if target is OrderStatus.FAILED:
            return True
        return target.rank > self.rank


_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.ROUTING: 1,
    OrderStatus.BUILDING: 2,
    OrderStatus.SUBMITTED: 3,
    OrderStatus.CONFIRMED: 4,
    OrderStatus.FAILED: 4,
}


def _is_number(value: Any) -> bool:
    """有限数值 (排除 bool / NaN / Infinity / 超出 float 范围的整数)"""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


@dataclass
class OrderRequest:
    """统一 swap 请求"""
    token_in: str
    token_out: str
    amount_in: float
    slippage: float = DEFAULT_SLIPPAGE
    order_type: OrderType = OrderType.MARKET

    def validate(self) -> None:
        """验证请求参数"""
        if not isinstance(self.token_in, str) or not self.token_in.strip():
            raise ValidationError("tokenIn is required", field="tokenIn")

        if not isinstance(self.token_out, str) or not self.token_out.strip():
            raise ValidationError("tokenOut is required", field="tokenOut")

        if not _is_number(self.amount_in) or self.amount_in <= 0:
            raise ValidationError("amountIn must be a positive number", field="amountIn")

        if not _is_number(self.slippage) or not (0 < self.slippage <= 1):
            raise ValidationError("slippage must be in (0, 1]", field="slippage")

        # 只有 market 订单有执行流水线
        if self.order_type is not OrderType.MARKET:
            raise ValidationError(
                f"Order type {self.order_type.value} is not supported", field="type"
            )

    @classmethod
    def from_payload(cls, payload: Any) -> "OrderRequest":
        """从客户端 JSON 构建并校验"""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload")

        raw_type = payload.get("type") or OrderType.MARKET.value
        try:
            order_type = OrderType(raw_type)
        except ValueError:
            raise ValidationError(f"Unknown order type: {raw_type}", field="type")

        slippage = payload.get("slippage")
        request = cls(
            token_in=payload.get("tokenIn"),
            token_out=payload.get("tokenOut"),
            amount_in=payload.get("amountIn"),
            slippage=DEFAULT_SLIPPAGE if slippage is None else slippage,
            order_type=order_type,
        )
        request.validate()
        return request

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.order_type.value,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amountIn": self.amount_in,
            "slippage": self.slippage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderRequest":
        """从队列 payload 还原 (已在入口校验过)"""
        return cls(
            token_in=data["tokenIn"],
            token_out=data["tokenOut"],
            amount_in=float(data["amountIn"]),
            slippage=float(data.get("slippage") or DEFAULT_SLIPPAGE),
            order_type=OrderType(data.get("type") or OrderType.MARKET.value),
        )


@dataclass
class Order:
    """
    订单记录

    字段约束:
    - tx_hash / dex / executed_price 仅在 confirmed 时存在
    - error 仅在 failed 时存在
    """
    id: str
    token_in: str
    token_out: str
    amount_in: float
    slippage: float = DEFAULT_SLIPPAGE
    type: OrderType = OrderType.MARKET
    status: OrderStatus = OrderStatus.PENDING
    attempts: int = 0
    dex: Optional[str] = None
    tx_hash: Optional[str] = None
    executed_price: Optional[float] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def from_request(cls, order_id: str, request: OrderRequest) -> "Order":
        now = time.time()
        return cls(
            id=order_id,
            token_in=request.token_in,
            token_out=request.token_out,
            amount_in=request.amount_in,
            slippage=request.slippage,
            type=request.order_type,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为客户端 JSON (camelCase)"""
        return {
            "id": self.id,
            "type": self.type.value,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amountIn": self.amount_in,
            "slippage": self.slippage,
            "status": self.status.value,
            "attempts": self.attempts,
            "dex": self.dex,
            "txHash": self.tx_hash,
            "executedPrice": self.executed_price,
            "error": self.error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
