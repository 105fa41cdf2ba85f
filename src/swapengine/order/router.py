"""
场所路由器

职责:
1. 并发向所有配置的场所请求报价
2. 单场所超时/失败时降级, 用剩余报价决策
3. 按确定性规则选出最优报价
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from swapengine import metrics
from swapengine.core.exceptions import RoutingError
from swapengine.venue.base import Quote, VenueProvider

logger = logging.getLogger(__name__)

PRICE_EPSILON = 1e-12


@dataclass
class RoutingDecision:
    """一次路由决策"""
    chosen: Quote
    quotes: List[Quote]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chosen": self.chosen.to_dict(),
            "quotes": [q.to_dict() for q in self.quotes],
        }


class VenueRouter:
    """
    场所路由器

    选择规则:
    - 价格高者优先 (价格即输出代币数量)
    - 价格差在 epsilon 内时, 流动性高者优先
    - 仍然相同时, 取规范场所顺序中的第一个
    """

    def __init__(
        self,
        provider: VenueProvider,
        venues: Optional[Sequence[str]] = None,
        quote_timeout: Optional[float] = 5.0,
        epsilon: float = PRICE_EPSILON,
    ):
        self.provider = provider
        self.venues: List[str] = list(venues) if venues else provider.venues
        self.quote_timeout = quote_timeout
        self.epsilon = epsilon

    def _canonical_index(self, venue: str) -> int:
        try:
            return self.venues.index(venue)
        except ValueError:
            return len(self.venues)

    def select_best(self, quotes: Sequence[Quote]) -> Quote:
        """选出最优报价"""
        if not quotes:
            raise RoutingError("No quotes to choose from", venues=self.venues)

        # 稳定排序: 规范顺序靠前的先参与比较, 平局保留先到者
        ordered = sorted(quotes, key=lambda q: self._canonical_index(q.venue))

        best = ordered[0]
        for quote in ordered[1:]:
            if quote.price > best.price + self.epsilon:
                best = quote
            elif abs(quote.price - best.price) <= self.epsilon and quote.liquidity > best.liquidity:
                best = quote
        return best

    async def _fetch_one(
        self,
        venue: str,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> Quote:
        call = self.provider.get_quote(venue, token_in, token_out, amount_in)
        if self.quote_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self.quote_timeout)

    async def fetch_quotes(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> List[Quote]:
        """并发获取所有场所报价, 丢弃失败/超时的场所"""
        results = await asyncio.gather(
            *(self._fetch_one(v, token_in, token_out, amount_in) for v in self.venues),
            return_exceptions=True,
        )

        quotes: List[Quote] = []
        errors: List[str] = []
        for venue, result in zip(self.venues, results):
            if isinstance(result, Quote):
                metrics.record_quote(venue, "ok")
                quotes.append(result)
            elif isinstance(result, asyncio.TimeoutError):
                metrics.record_quote(venue, "timeout")
                errors.append(f"{venue}: timeout after {self.quote_timeout}s")
                logger.warning(f"Quote from {venue} timed out after {self.quote_timeout}s")
            elif isinstance(result, Exception):
                metrics.record_quote(venue, "error")
                errors.append(f"{venue}: {result}")
                logger.warning(f"Quote from {venue} failed: {result}")
            else:
                # CancelledError 等 BaseException 不吞掉
                raise result

        if not quotes:
            raise RoutingError(
                "No venue returned a quote: " + "; ".join(errors),
                venues=self.venues,
            )

        if len(quotes) < len(self.venues):
            logger.info(f"Routing degraded to {[q.venue for q in quotes]}")

        return quotes

    async def route(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> RoutingDecision:
        """报价 + 选择"""
        quotes = await self.fetch_quotes(token_in, token_out, amount_in)
        chosen = self.select_best(quotes)
        metrics.ROUTES_CHOSEN.labels(venue=chosen.venue).inc()
        return RoutingDecision(chosen=chosen, quotes=quotes)
