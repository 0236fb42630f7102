"""
dex/adapters/constant_product.py - Constant-product pool simulation.

Prices a swap locally from pair reserves (x * y = k, 0.3% fee):

    amount_out = in * 997 * r_out / (r_in * 1000 + in * 997)

The pair is found through the factory's getPair; the answer is cached per
token pair since pair addresses never change.
"""

import time
from decimal import Decimal

from eth_abi import encode

from chains import abi
from chains.providers import RPCProvider
from core.constants import (
    DEFAULT_SLIPPAGE_PCT,
    DEFAULT_VENUE_TIMEOUT_SECONDS,
    SWAP_DEADLINE_SECONDS,
    VenueId,
    ZERO_ADDRESS,
)
from core.exceptions import LiquidityError
from core.logging import get_logger
from core.models import Quote, SwapCalldata
from core.time import now_seconds
from dex.adapters.base import QuoteVenue, min_amount_out

logger = get_logger(__name__)

DEFAULT_SOURCE_ID = 3
FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Constant-product output for amount_in, rounded down."""
    if amount_in <= 0:
        raise LiquidityError("amount_in must be positive")
    if reserve_in <= 0 or reserve_out <= 0:
        raise LiquidityError(
            "Pair has no reserves",
            details={"reserve_in": reserve_in, "reserve_out": reserve_out},
        )
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    return (amount_in_with_fee * reserve_out) // (reserve_in * FEE_DENOMINATOR + amount_in_with_fee)


class ConstantProductVenue(QuoteVenue):
    """
    Uniswap V2 style pairs.

    Args:
        provider: RPC provider
        factory_address: Pair factory
        router: Router used by the taker contract
    """

    venue_id = VenueId.CONSTANT_PRODUCT.value

    def __init__(
        self,
        provider: RPCProvider,
        factory_address: str,
        router: str,
        source_id: int = DEFAULT_SOURCE_ID,
        timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.factory_address = factory_address
        self.router = router
        self.source_id = source_id
        self.timeout_seconds = timeout_seconds
        self._pairs: dict[tuple[str, str], str] = {}

    async def get_pair(self, token_a: str, token_b: str) -> str:
        key = tuple(sorted((token_a.lower(), token_b.lower())))
        if key not in self._pairs:
            data = await self.provider.eth_call(
                self.factory_address,
                abi.CP_FACTORY_GET_PAIR.encode(token_a, token_b),
            )
            (pair,) = abi.CP_FACTORY_GET_PAIR.decode(data)
            if pair.lower() == ZERO_ADDRESS:
                raise LiquidityError(
                    "No pair for tokens",
                    details={"token_a": token_a, "token_b": token_b},
                )
            self._pairs[key] = pair
        return self._pairs[key]

    async def get_reserves(self, pair: str, token_in: str) -> tuple[int, int]:
        """(reserve_in, reserve_out) oriented for token_in."""
        data = await self.provider.eth_call(pair, abi.CP_PAIR_GET_RESERVES.encode())
        reserve0, reserve1, _ = abi.CP_PAIR_GET_RESERVES.decode(data)
        (token0,) = abi.CP_PAIR_TOKEN0.decode(
            await self.provider.eth_call(pair, abi.CP_PAIR_TOKEN0.encode())
        )
        if token0.lower() == token_in.lower():
            return reserve0, reserve1
        return reserve1, reserve0

    async def quote(self, amount_in: int, token_in: str, token_out: str) -> Quote:
        start_ms = int(time.time() * 1000)
        pair = await self.get_pair(token_in, token_out)
        reserve_in, reserve_out = await self.get_reserves(pair, token_in)
        amount_out = get_amount_out(amount_in, reserve_in, reserve_out)
        if amount_out == 0:
            raise LiquidityError("Constant-product output rounds to zero")

        return Quote(
            venue=self.venue_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            latency_ms=int(time.time() * 1000) - start_ms,
            raw={"pair": pair, "reserve_in": reserve_in, "reserve_out": reserve_out},
        )

    async def swap(
        self,
        quote: Quote,
        recipient: str,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
    ) -> SwapCalldata:
        minimum = min_amount_out(quote.amount_out or 0, slippage_pct)
        details = (
            self.router,
            quote.token_out,
            minimum,
            now_seconds() + SWAP_DEADLINE_SECONDS,
        )
        data = "0x" + encode(["(address,address,uint256,uint256)"], [details]).hex()
        return SwapCalldata(
            venue=self.venue_id,
            router=self.router,
            data=data,
            source=self.source_id,
            min_amount_out=minimum,
        )
