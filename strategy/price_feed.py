"""
strategy/price_feed.py - Feed price per pool.

Sources:
- fixed: configured value
- coingecko: simple-price query (demo API key header)
- pool: one of the pool's own reference prices (hpb, htp, lup, llb)

With invert set the feed returns 1/price (0 stays 0).
"""

from decimal import Decimal, InvalidOperation

import httpx

from config.schema import PriceOrigin
from core.constants import PoolPriceReference, PriceSource
from core.exceptions import InfraError, InvariantError, RateLimitError, ErrorCode
from core.logging import get_logger
from protocol.pool import LendingPool

logger = get_logger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/"


class PriceFeed:
    """Resolves a PriceOrigin to a Decimal price."""

    def __init__(
        self,
        coingecko_api_key: str = "",
        base_url: str = COINGECKO_URL,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.coingecko_api_key = coingecko_api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_price(self, pool: LendingPool, origin: PriceOrigin) -> Decimal:
        """
        Raises:
            InfraError: Price source unreachable
            InvariantError: Price source returned no usable price
        """
        if origin.source == PriceSource.FIXED:
            price = origin.value if origin.value is not None else Decimal("0")
        elif origin.source == PriceSource.COINGECKO:
            price = await self.coingecko_price(origin.query or "")
        elif origin.source == PriceSource.POOL:
            price = await self.pool_price(pool, origin.reference)
        else:
            raise InvariantError(f"Unknown price source: {origin.source}")

        if origin.invert:
            return Decimal(1) / price if price != 0 else Decimal("0")
        return price

    async def coingecko_price(self, query: str) -> Decimal:
        """First value of the first coin in a simple-price response."""
        client = await self._get_client()
        headers = {"accept": "application/json"}
        if self.coingecko_api_key:
            headers["x-cg-demo-api-key"] = self.coingecko_api_key

        try:
            resp = await client.get(self.base_url + query, headers=headers)
        except httpx.HTTPError as e:
            raise InfraError(
                f"CoinGecko request failed: {e}",
                code=ErrorCode.INFRA_HTTP_ERROR,
            ) from e

        if resp.status_code == 429:
            raise RateLimitError("CoinGecko rate limited")
        if resp.status_code != 200:
            raise InfraError(
                f"CoinGecko returned HTTP {resp.status_code}",
                code=ErrorCode.INFRA_HTTP_ERROR,
            )

        try:
            body = resp.json()
            coin = next(iter(body.values()))
            value = next(iter(coin.values()))
            return Decimal(str(value))
        except (ValueError, AttributeError, StopIteration, InvalidOperation) as e:
            raise InvariantError(
                "CoinGecko response has no price",
                details={"query": query},
            ) from e

    async def pool_price(self, pool: LendingPool, reference: PoolPriceReference | None) -> Decimal:
        prices = await pool.get_prices()
        if reference == PoolPriceReference.HPB:
            return prices.hpb
        if reference == PoolPriceReference.HTP:
            return prices.htp
        if reference == PoolPriceReference.LUP:
            return prices.lup
        if reference == PoolPriceReference.LLB:
            return prices.llb
        raise InvariantError(f"Unknown pool price reference: {reference}")
