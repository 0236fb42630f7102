"""
dex/adapters/uniswap_v3.py - Uniswap V3 venue.

Quotes via QuoterV2 quoteExactInputSingle (eth_call). Swap details are
ABI-encoded for the taker contract, which routes through the universal
router with permit2.
"""

import time
from decimal import Decimal

from eth_abi import encode

from chains.abi import QUOTER_V2_EXACT_INPUT_SINGLE
from chains.providers import RPCProvider
from core.constants import (
    DEFAULT_SLIPPAGE_PCT,
    DEFAULT_UNISWAP_FEE_TIER,
    DEFAULT_VENUE_TIMEOUT_SECONDS,
    SWAP_DEADLINE_SECONDS,
    VenueId,
)
from core.exceptions import (
    InvariantError,
    LiquidityError,
    QuoteError,
    QuoteRevertError,
    SimulationRevertError,
)
from core.logging import get_logger
from core.models import Quote, SwapCalldata
from core.time import now_seconds
from dex.adapters.base import QuoteVenue, min_amount_out

logger = get_logger(__name__)

DEFAULT_SOURCE_ID = 2
SWAP_DETAILS_TYPE = "(address,address,address,uint24,uint256,uint256)"


def encode_quote_exact_input_single(
    token_in: str,
    token_out: str,
    amount_in: int,
    fee: int,
    sqrt_price_limit_x96: int = 0,
) -> str:
    """quoteExactInputSingle calldata; the params struct is a static tuple."""
    return QUOTER_V2_EXACT_INPUT_SINGLE.encode(
        (token_in, token_out, amount_in, fee, sqrt_price_limit_x96)
    )


def decode_quote_response(hex_result: str) -> tuple[int, int, int, int]:
    """
    Decode quoteExactInputSingle return data.

    Returns:
        (amountOut, sqrtPriceX96After, initializedTicksCrossed, gasEstimate)
    """
    try:
        return QUOTER_V2_EXACT_INPUT_SINGLE.decode(hex_result)
    except InvariantError as e:
        raise QuoteError(
            "Malformed QuoterV2 response",
            details={"raw": (hex_result or "")[:100], **e.details},
        ) from e


class UniswapV3Venue(QuoteVenue):
    """
    Uniswap V3 single-pool quotes.

    Args:
        provider: RPC provider
        quoter_address: QuoterV2 address
        router: Universal router used by the taker contract
        permit2: Permit2 address
        fee_tier: Pool fee tier (500, 3000, 10000)
    """

    venue_id = VenueId.UNISWAP_V3.value

    def __init__(
        self,
        provider: RPCProvider,
        quoter_address: str,
        router: str,
        permit2: str,
        fee_tier: int = DEFAULT_UNISWAP_FEE_TIER,
        source_id: int = DEFAULT_SOURCE_ID,
        timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.quoter_address = quoter_address
        self.router = router
        self.permit2 = permit2
        self.fee_tier = fee_tier
        self.source_id = source_id
        self.timeout_seconds = timeout_seconds

    async def quote(self, amount_in: int, token_in: str, token_out: str) -> Quote:
        start_ms = int(time.time() * 1000)
        calldata = encode_quote_exact_input_single(token_in, token_out, amount_in, self.fee_tier)

        try:
            result = await self.provider.eth_call(self.quoter_address, calldata)
        except SimulationRevertError as e:
            raise QuoteRevertError(
                f"QuoterV2 reverted (fee tier {self.fee_tier})",
                details={"token_in": token_in, "token_out": token_out, "error": e.message},
            ) from e

        if not result or result == "0x":
            raise QuoteRevertError("Empty QuoterV2 response")

        amount_out, _, ticks_crossed, gas_estimate = decode_quote_response(result)
        if amount_out == 0:
            raise LiquidityError(
                "QuoterV2 returned zero output",
                details={"fee_tier": self.fee_tier},
            )

        return Quote(
            venue=self.venue_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            gas_estimate=gas_estimate,
            latency_ms=int(time.time() * 1000) - start_ms,
            raw={"ticks_crossed": ticks_crossed, "fee_tier": self.fee_tier},
        )

    def encode_swap_details(self, target_token: str, slippage_pct: Decimal) -> str:
        details = (
            self.router,
            self.permit2,
            target_token,
            self.fee_tier,
            int(slippage_pct * 100),
            now_seconds() + SWAP_DEADLINE_SECONDS,
        )
        return "0x" + encode([SWAP_DETAILS_TYPE], [details]).hex()

    async def swap(
        self,
        quote: Quote,
        recipient: str,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
    ) -> SwapCalldata:
        return SwapCalldata(
            venue=self.venue_id,
            router=self.router,
            data=self.encode_swap_details(quote.token_out, slippage_pct),
            source=self.source_id,
            min_amount_out=min_amount_out(quote.amount_out or 0, slippage_pct),
        )
