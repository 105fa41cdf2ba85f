"""
模拟报价场所

两个 DEX 的报价在基准价附近随机波动, 成交价在报价附近随机扰动。
延迟可以通过 latency_scale 缩放 (测试中设为 0)。
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from swapengine.core.exceptions import ProviderError
from swapengine.order.id_manager import generate_tx_hash

from .base import ExecutionResult, Quote, VenueProvider, check_slippage

logger = logging.getLogger(__name__)


@dataclass
class VenueProfile:
    """模拟场所参数"""
    price_band: Tuple[float, float]
    fee: float
    latency: Tuple[float, float]  # 秒
    max_liquidity: float = 1000.0


DEFAULT_PROFILES: Dict[str, VenueProfile] = {
    "raydium": VenueProfile(price_band=(0.98, 1.02), fee=0.003, latency=(0.2, 0.4)),
    "meteora": VenueProfile(price_band=(0.97, 1.03), fee=0.002, latency=(0.2, 0.5)),
}


class SimulatedVenueProvider(VenueProvider):
    """
    模拟报价/执行

    - 报价: base_price * U(price_band), 流动性 U(0, max_liquidity)
    - 执行: 2-3 秒延迟, 成交价 = 报价 * U(execution_variance)
    """

    def __init__(
        self,
        venues: Optional[Sequence[str]] = None,
        base_price: float = 100.0,
        latency_scale: float = 1.0,
        execution_latency: Tuple[float, float] = (2.0, 3.0),
        execution_variance: Tuple[float, float] = (0.995, 1.005),
        profiles: Optional[Dict[str, VenueProfile]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.profiles = dict(DEFAULT_PROFILES)
        if profiles:
            self.profiles.update(profiles)
        super().__init__(venues or list(self.profiles.keys()))

        self.base_price = base_price
        self.latency_scale = latency_scale
        self.execution_latency = execution_latency
        self.execution_variance = execution_variance
        self._rng = rng or random.Random()

    def _profile(self, venue: str) -> VenueProfile:
        profile = self.profiles.get(venue)
        if profile is None:
            raise ProviderError(f"Unknown venue: {venue}", venue=venue)
        return profile

    async def _sleep(self, bounds: Tuple[float, float]) -> None:
        delay = self._rng.uniform(*bounds) * self.latency_scale
        await asyncio.sleep(max(0.0, delay))

    async def get_quote(
        self,
        venue: str,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> Quote:
        profile = self._profile(venue)
        await self._sleep(profile.latency)

        price = self.base_price * self._rng.uniform(*profile.price_band)
        return Quote(
            venue=venue,
            price=price,
            fee=profile.fee,
            liquidity=self._rng.uniform(0, profile.max_liquidity),
        )

    async def execute_swap(
        self,
        venue: str,
        amount_in: float,
        slippage: float,
        price: float,
        token_in: Optional[str] = None,
        token_out: Optional[str] = None,
    ) -> ExecutionResult:
        self._profile(venue)
        await self._sleep(self.execution_latency)

        executed_price = price * self._rng.uniform(*self.execution_variance)
        check_slippage(price, executed_price, slippage, venue=venue)

        return ExecutionResult(
            venue=venue,
            tx_hash=generate_tx_hash(),
            executed_price=executed_price,
        )
