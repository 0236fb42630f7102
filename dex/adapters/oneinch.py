"""
dex/adapters/oneinch.py - 1inch aggregator venue.

Two-step pricing: GET /{chain}/quote prices the swap, GET /{chain}/swap
returns router calldata. The last successful quote per
(token_in, token_out, amount_in) is memoized so swap() does not price the
same amounts twice.

HTTP 429 raises RateLimitError and is retried by the injected RetryPolicy.
"""

import time
from decimal import Decimal
from typing import Any

import httpx

from core.constants import DEFAULT_SLIPPAGE_PCT, DEFAULT_VENUE_TIMEOUT_SECONDS, VenueId
from core.exceptions import (
    InfraError,
    LiquidityError,
    QuoteError,
    RateLimitError,
    ErrorCode,
)
from core.logging import get_logger
from core.models import Quote, SwapCalldata
from dex.adapters.base import QuoteVenue, min_amount_out
from dex.retry import RetryPolicy

logger = get_logger(__name__)

DEFAULT_SOURCE_ID = 1


class OneInchVenue(QuoteVenue):
    """
    1inch swap API client.

    Args:
        api_url: Base URL, e.g. https://api.1inch.dev/swap/v6.0
        chain_id: Chain the keeper runs on
        api_key: Bearer token (optional)
        retry_policy: Backoff for rate limits
        source_id: Liquidity source id understood by the taker contract
    """

    venue_id = VenueId.ONEINCH.value

    def __init__(
        self,
        api_url: str,
        chain_id: int,
        api_key: str = "",
        retry_policy: RetryPolicy | None = None,
        source_id: int = DEFAULT_SOURCE_ID,
        timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.chain_id = chain_id
        self.api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self.source_id = source_id
        self.timeout_seconds = timeout_seconds
        self._client = client
        # Last quote per token pair, consumed by swap()
        self._memo: dict[tuple[str, str], Quote] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.api_url}/{self.chain_id}/{endpoint}"

        async def attempt() -> dict[str, Any]:
            client = await self._get_client()
            try:
                resp = await client.get(url, params=params)
            except httpx.TimeoutException as e:
                raise InfraError(
                    f"1inch {endpoint} timed out",
                    code=ErrorCode.INFRA_TIMEOUT,
                ) from e
            except httpx.HTTPError as e:
                raise InfraError(
                    f"1inch {endpoint} request failed: {e}",
                    code=ErrorCode.INFRA_HTTP_ERROR,
                ) from e

            if resp.status_code == 429:
                retry_after = resp.headers.get("Retry-After")
                raise RateLimitError(
                    f"1inch {endpoint} rate limited",
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    details={"endpoint": endpoint},
                )
            if resp.status_code != 200:
                raise InfraError(
                    f"1inch {endpoint} returned HTTP {resp.status_code}",
                    code=ErrorCode.INFRA_HTTP_ERROR,
                    details={"status": resp.status_code, "body": resp.text[:200]},
                )
            try:
                return resp.json()
            except ValueError as e:
                raise QuoteError(f"1inch {endpoint} returned invalid JSON") from e

        return await self.retry_policy.run(attempt)

    @staticmethod
    def _parse_amount(body: dict[str, Any]) -> int:
        raw = body.get("dstAmount", body.get("toAmount"))
        if raw is None:
            raise QuoteError("1inch response has no dstAmount", details={"keys": sorted(body)})
        try:
            amount = int(raw)
        except (TypeError, ValueError) as e:
            raise QuoteError(f"1inch dstAmount is not an integer: {raw!r}") from e
        if amount <= 0:
            raise LiquidityError("1inch returned zero output")
        return amount

    async def quote(self, amount_in: int, token_in: str, token_out: str) -> Quote:
        start_ms = int(time.time() * 1000)
        body = await self._get(
            "quote",
            {"src": token_in, "dst": token_out, "amount": str(amount_in), "includeGas": "true"},
        )
        amount_out = self._parse_amount(body)
        gas = body.get("gas")

        result = Quote(
            venue=self.venue_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            gas_estimate=int(gas) if gas is not None else None,
            latency_ms=int(time.time() * 1000) - start_ms,
            raw=body,
        )
        self._memo[(token_in.lower(), token_out.lower())] = result
        return result

    def memoized(self, amount_in: int, token_in: str, token_out: str) -> Quote | None:
        """The last quote of this pair, if it priced exactly amount_in."""
        quote = self._memo.get((token_in.lower(), token_out.lower()))
        if quote is None or quote.amount_in != amount_in:
            return None
        return quote

    async def swap(
        self,
        quote: Quote,
        recipient: str,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
    ) -> SwapCalldata:
        priced = quote if quote.venue == self.venue_id and quote.is_success else None
        if priced is None:
            priced = self.memoized(quote.amount_in, quote.token_in, quote.token_out)
        if priced is None:
            logger.debug("No 1inch quote for these amounts, re-quoting")
            priced = await self.quote(quote.amount_in, quote.token_in, quote.token_out)

        body = await self._get(
            "swap",
            {
                "src": priced.token_in,
                "dst": priced.token_out,
                "amount": str(priced.amount_in),
                "from": recipient,
                "slippage": str(slippage_pct),
                "disableEstimate": "true",
            },
        )
        tx = body.get("tx")
        if not isinstance(tx, dict) or not tx.get("to") or not tx.get("data"):
            raise QuoteError("1inch swap response has no tx payload")
        self._memo.pop((priced.token_in.lower(), priced.token_out.lower()), None)

        return SwapCalldata(
            venue=self.venue_id,
            router=tx["to"],
            data=tx["data"],
            source=self.source_id,
            min_amount_out=min_amount_out(priced.amount_out or 0, slippage_pct),
        )
