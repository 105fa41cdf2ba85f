"""
测试场所路由: 最优报价选择与降级
"""

import asyncio

import pytest

from swapengine.core.exceptions import ProviderError, RoutingError
from swapengine.order.router import VenueRouter
from swapengine.venue.base import ExecutionResult, Quote, VenueProvider


class StaticProvider(VenueProvider):
    """返回固定报价; 值为异常时抛出, 值为 None 时挂起"""

    def __init__(self, quotes):
        super().__init__(list(quotes.keys()))
        self.quotes = quotes

    async def get_quote(self, venue, token_in, token_out, amount_in):
        value = self.quotes[venue]
        if value is None:
            await asyncio.sleep(3600)
        if isinstance(value, Exception):
            raise value
        return value

    async def execute_swap(self, venue, amount_in, slippage, price, token_in=None, token_out=None):
        return ExecutionResult(venue=venue, tx_hash="5" + "0" * 32, executed_price=price)


def _router(quotes, timeout=5.0):
    return VenueRouter(StaticProvider(quotes), quote_timeout=timeout)


def test_select_best_prefers_higher_price():
    router = _router({"raydium": None, "meteora": None})
    best = router.select_best([
        Quote("raydium", price=100.0, fee=0.003, liquidity=900.0),
        Quote("meteora", price=101.0, fee=0.002, liquidity=10.0),
    ])
    assert best.venue == "meteora"


def test_select_best_breaks_price_tie_on_liquidity():
    router = _router({"raydium": None, "meteora": None})
    best = router.select_best([
        Quote("raydium", price=100.0, fee=0.003, liquidity=10.0),
        Quote("meteora", price=100.0 + 1e-13, fee=0.002, liquidity=500.0),
    ])
    assert best.venue == "meteora"


def test_select_best_full_tie_keeps_canonical_first():
    router = _router({"raydium": None, "meteora": None})
    # 传入顺序与规范顺序相反
    best = router.select_best([
        Quote("meteora", price=100.0, fee=0.002, liquidity=50.0),
        Quote("raydium", price=100.0, fee=0.003, liquidity=50.0),
    ])
    assert best.venue == "raydium"


def test_select_best_empty_raises():
    router = _router({"raydium": None})
    with pytest.raises(RoutingError):
        router.select_best([])


@pytest.mark.asyncio
async def test_route_degrades_when_one_venue_fails():
    router = _router({
        "raydium": ProviderError("boom", venue="raydium"),
        "meteora": Quote("meteora", price=99.0, fee=0.002, liquidity=1.0),
    })

    decision = await router.route("SOL", "USDC", 1.0)

    assert decision.chosen.venue == "meteora"
    assert [q.venue for q in decision.quotes] == ["meteora"]
    assert decision.to_dict()["chosen"]["dex"] == "meteora"


@pytest.mark.asyncio
async def test_route_drops_venue_after_quote_timeout():
    router = _router(
        {
            "raydium": Quote("raydium", price=98.0, fee=0.003, liquidity=1.0),
            "meteora": None,
        },
        timeout=0.05,
    )

    decision = await router.route("SOL", "USDC", 1.0)
    assert decision.chosen.venue == "raydium"


@pytest.mark.asyncio
async def test_route_fails_when_no_venue_answers():
    router = _router({
        "raydium": ProviderError("down", venue="raydium"),
        "meteora": ProviderError("down", venue="meteora"),
    })

    with pytest.raises(RoutingError) as exc_info:
        await router.route("SOL", "USDC", 1.0)
    assert exc_info.value.venues == ["raydium", "meteora"]


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((101.0, 0.0), (100.0, 0.0), "raydium"),
        ((100.0, 50.0), (100.0, 80.0), "meteora"),
        ((100.0, 80.0), (100.0, 80.0), "raydium"),
    ],
)
def test_select_best_rule_table(a, b, expected):
    router = _router({"raydium": None, "meteora": None})
    best = router.select_best([
        Quote("raydium", price=a[0], fee=0.003, liquidity=a[1]),
        Quote("meteora", price=b[0], fee=0.002, liquidity=b[1]),
    ])
    assert best.venue == expected
