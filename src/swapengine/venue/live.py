"""
真实报价场所 (HTTP 聚合网关)

Endpoint:
- GET  {base_url}/quote?venue=..&tokenIn=..&tokenOut=..&amountIn=..
  -> {"price": .., "fee": .., "liquidity": ..}
- POST {base_url}/swap {"venue", "amountIn", "slippage", "price", "tokenIn", "tokenOut"}
  -> {"txHash": .., "executedPrice": ..}
"""

import logging
from typing import Any, Dict, Optional, Sequence

import aiohttp

from swapengine.core.exceptions import ProviderError, RateLimitError

from .base import ExecutionResult, Quote, VenueProvider, check_slippage

logger = logging.getLogger(__name__)


class LiveVenueProvider(VenueProvider):
    """通过 HTTP 网关获取报价与执行 swap"""

    def __init__(
        self,
        base_url: str,
        venues: Sequence[str],
        api_key: str = "",
        request_timeout: float = 10.0,
    ):
        super().__init__(venues)
        if not base_url:
            raise ValueError("Live venue provider requires base_url")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            logger.info(f"Live venue provider connected to {self.base_url}")

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        venue: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()

        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(
                method, url, params=params, json=payload, headers=self._headers()
            ) as resp:
                if resp.status == 429:
                    retry_after = float(resp.headers.get("Retry-After", "1") or 1)
                    raise RateLimitError(
                        f"{venue}: rate limited on {path}",
                        venue=venue,
                        retry_after=retry_after,
                    )
                if resp.status != 200:
                    text = await resp.text()
                    raise ProviderError(
                        f"{venue}: HTTP {resp.status} on {path}: {text[:200]}",
                        venue=venue,
                    )
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise ProviderError(f"{venue}: request failed: {e}", venue=venue) from e

        if not isinstance(data, dict):
            raise ProviderError(f"{venue}: unexpected response on {path}", venue=venue)
        return data

    async def get_quote(
        self,
        venue: str,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> Quote:
        data = await self._request(
            "GET",
            "/quote",
            venue,
            params={
                "venue": venue,
                "tokenIn": token_in,
                "tokenOut": token_out,
                "amountIn": str(amount_in),
            },
        )
        try:
            return Quote(
                venue=venue,
                price=float(data["price"]),
                fee=float(data.get("fee", 0.0)),
                liquidity=float(data.get("liquidity", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"{venue}: malformed quote: {data}", venue=venue) from e

    async def execute_swap(
        self,
        venue: str,
        amount_in: float,
        slippage: float,
        price: float,
        token_in: Optional[str] = None,
        token_out: Optional[str] = None,
    ) -> ExecutionResult:
        data = await self._request(
            "POST",
            "/swap",
            venue,
            payload={
                "venue": venue,
                "amountIn": amount_in,
                "slippage": slippage,
                "price": price,
                "tokenIn": token_in,
                "tokenOut": token_out,
            },
        )
        try:
            executed_price = float(data["executedPrice"])
            tx_hash = str(data["txHash"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"{venue}: malformed swap result: {data}", venue=venue) from e

        # 网关不保证执行滑点保护, 本地再校验一次
        check_slippage(price, executed_price, slippage, venue=venue)
        return ExecutionResult(venue=venue, tx_hash=tx_hash, executed_price=executed_price)
