"""
报价/执行提供方基类

流水线只依赖此接口:
- get_quote: 返回某场所的报价
- execute_swap: 返回成交结果, 或抛出 SlippageExceeded
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging

from swapengine.core.exceptions import SlippageExceeded

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    """单个场所的报价 (仅在一次路由决策内存在)"""
    venue: str
    price: float
    fee: float
    liquidity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dex": self.venue,
            "price": self.price,
            "fee": self.fee,
            "liquidity": self.liquidity,
        }


@dataclass
class ExecutionResult:
    """成交结果"""
    venue: str
    tx_hash: str
    executed_price: float


def slippage_floor(quoted_price: float, slippage: float) -> float:
    """最低可接受成交价 = 报价 * (1 - 滑点)"""
    return quoted_price * (1 - slippage)


def check_slippage(
    quoted_price: float,
    executed_price: float,
    slippage: float,
    venue: str = "",
) -> None:
    """成交价低于下限时抛出 SlippageExceeded"""
    floor = slippage_floor(quoted_price, slippage)
    if executed_price < floor:
        raise SlippageExceeded(
            quoted_price=quoted_price,
            executed_price=executed_price,
            min_price=floor,
            venue=venue,
        )


class VenueProvider(ABC):
    """
    报价/执行提供方

    模拟实现与真实实现可以互换。
    """

    def __init__(self, venues: Sequence[str]):
        self._venues: List[str] = list(venues)

    @property
    def venues(self) -> List[str]:
        """规范场所顺序 (路由平局时按此顺序取第一个)"""
        return list(self._venues)

    async def start(self) -> None:
        """打开资源 (HTTP session 等)"""

    async def close(self) -> None:
        """释放资源"""

    @abstractmethod
    async def get_quote(
        self,
        venue: str,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> Quote:
        """获取报价"""

    @abstractmethod
    async def execute_swap(
        self,
        venue: str,
        amount_in: float,
        slippage: float,
        price: float,
        token_in: Optional[str] = None,
        token_out: Optional[str] = None,
    ) -> ExecutionResult:
        """执行 swap"""
