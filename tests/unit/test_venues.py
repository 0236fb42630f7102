# PATH: tests/unit/test_venues.py
"""
Unit tests for liquidity venues: 1inch (HTTP), Uniswap V3 quoter and
constant-product pairs (eth_call).
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_abi import decode, encode

from chains import abi
from core.constants import ErrorCode
from core.exceptions import (
    InfraError,
    LiquidityError,
    QuoteError,
    QuoteRevertError,
    RateLimitError,
    SimulationRevertError,
)
from core.models import Quote
from dex.adapters.constant_product import ConstantProductVenue, get_amount_out
from dex.adapters.oneinch import OneInchVenue
from dex.adapters.uniswap_v3 import (
    UniswapV3Venue,
    decode_quote_response,
    encode_quote_exact_input_single,
)
from dex.retry import RetryPolicy

WETH = "0x" + "01" * 20
USDC = "0x" + "02" * 20
QUOTER = "0x" + "03" * 20
ROUTER = "0x" + "04" * 20
PERMIT2 = "0x" + "05" * 20
FACTORY = "0x" + "06" * 20
PAIR = "0x" + "07" * 20
TAKER = "0x" + "08" * 20


async def no_sleep(_seconds: float) -> None:
    return None


def oneinch(handler, **kwargs) -> OneInchVenue:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OneInchVenue(
        api_url="https://api.1inch.dev/swap/v6.0/",
        chain_id=1,
        client=client,
        retry_policy=RetryPolicy(max_attempts=3, sleep=no_sleep),
        **kwargs,
    )


class TestOneInchQuote:
    @pytest.mark.asyncio
    async def test_quote_success(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"dstAmount": "3500000000", "gas": 180000})

        venue = oneinch(handler)
        quote = await venue.quote(10**18, WETH, USDC)

        assert quote.is_success
        assert quote.amount_out == 3_500_000_000
        assert quote.gas_estimate == 180000
        assert requests[0].url.path == "/swap/v6.0/1/quote"
        assert requests[0].url.params["src"] == WETH
        assert requests[0].url.params["amount"] == str(10**18)

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self):
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "1"}),
            httpx.Response(200, json={"dstAmount": "42"}),
        ])
        venue = oneinch(lambda request: next(responses))

        quote = await venue.quote(1_000, WETH, USDC)
        assert quote.amount_out == 42

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        venue = oneinch(lambda request: httpx.Response(429))
        with pytest.raises(RateLimitError):
            await venue.quote(1_000, WETH, USDC)

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="oops")

        venue = oneinch(handler)
        with pytest.raises(InfraError) as exc_info:
            await venue.quote(1_000, WETH, USDC)
        assert exc_info.value.code == ErrorCode.INFRA_HTTP_ERROR
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_amount(self):
        venue = oneinch(lambda request: httpx.Response(200, json={"gas": 1}))
        with pytest.raises(QuoteError):
            await venue.quote(1_000, WETH, USDC)

    @pytest.mark.asyncio
    async def test_zero_amount_is_liquidity_error(self):
        venue = oneinch(lambda request: httpx.Response(200, json={"dstAmount": "0"}))
        with pytest.raises(LiquidityError):
            await venue.quote(1_000, WETH, USDC)


class TestOneInchSwap:
    @pytest.mark.asyncio
    async def test_swap_reuses_quote(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/quote"):
                return httpx.Response(200, json={"dstAmount": "10000"})
            return httpx.Response(200, json={"tx": {"to": ROUTER, "data": "0xdeadbeef"}})

        venue = oneinch(handler, source_id=1)
        quote = await venue.quote(1_000, WETH, USDC)
        swap = await venue.swap(quote, TAKER, Decimal("1"))

        assert [p.rsplit("/", 1)[1] for p in paths] == ["quote", "swap"]
        assert swap.router == ROUTER
        assert swap.data == "0xdeadbeef"
        assert swap.source == 1
        assert swap.min_amount_out == 9_900

    @pytest.mark.asyncio
    async def test_swap_uses_memo_for_foreign_quote(self):
        paths = []

        def handler(request):
            paths.append(request.url.path.rsplit("/", 1)[1])
            if paths[-1] == "quote":
                return httpx.Response(200, json={"dstAmount": "500"})
            return httpx.Response(200, json={"tx": {"to": ROUTER, "data": "0x01"}})

        venue = oneinch(handler)
        await venue.quote(1_000, WETH, USDC)
        unpriced = Quote("other", WETH, USDC, 1_000)
        await venue.swap(unpriced, TAKER)

        assert paths == ["quote", "swap"]
        assert venue.memoized(1_000, WETH, USDC) is None

    @pytest.mark.asyncio
    async def test_memo_keeps_last_quote_per_pair(self):
        def handler(request):
            amount = int(request.url.params["amount"])
            return httpx.Response(200, json={"dstAmount": str(amount * 2)})

        venue = oneinch(handler)
        for amount in range(1_000, 1_500):
            await venue.quote(amount, WETH, USDC)
        await venue.quote(7, USDC, WETH)

        assert len(venue._memo) == 2
        assert venue.memoized(1_499, WETH, USDC).amount_out == 2_998
        assert venue.memoized(1_000, WETH, USDC) is None

    @pytest.mark.asyncio
    async def test_swap_requotes_when_missing(self):
        paths = []

        def handler(request):
            paths.append(request.url.path.rsplit("/", 1)[1])
            if paths[-1] == "quote":
                return httpx.Response(200, json={"dstAmount": "500"})
            return httpx.Response(200, json={"tx": {"to": ROUTER, "data": "0x01"}})

        venue = oneinch(handler)
        await venue.swap(Quote("other", WETH, USDC, 1_000), TAKER)

        assert paths == ["quote", "swap"]

    @pytest.mark.asyncio
    async def test_swap_without_tx_payload(self):
        def handler(request):
            if request.url.path.endswith("/quote"):
                return httpx.Response(200, json={"dstAmount": "500"})
            return httpx.Response(200, json={"error": "nope"})

        venue = oneinch(handler)
        quote = await venue.quote(1_000, WETH, USDC)
        with pytest.raises(QuoteError):
            await venue.swap(quote, TAKER)


def quoter_response(amount_out: int, gas: int = 120_000) -> str:
    return "0x" + encode(["uint256", "uint160", "uint32", "uint256"], [amount_out, 0, 2, gas]).hex()


class TestUniswapV3:
    def test_encode_selector_and_struct(self):
        data = encode_quote_exact_input_single(WETH, USDC, 10**18, 500)
        assert data.startswith(abi.QUOTER_V2_EXACT_INPUT_SINGLE.selector_hex)
        (params,) = decode(["(address,address,uint256,uint24,uint160)"], bytes.fromhex(data[10:]))
        assert params[2] == 10**18
        assert params[3] == 500

    def test_decode_response(self):
        assert decode_quote_response(quoter_response(3_000, 99))[0] == 3_000

    def test_decode_malformed(self):
        with pytest.raises(QuoteError):
            decode_quote_response("0x1234")

    @pytest.mark.asyncio
    async def test_quote(self):
        provider = AsyncMock()
        provider.eth_call.return_value = quoter_response(3_500_000_000)
        venue = UniswapV3Venue(provider, QUOTER, ROUTER, PERMIT2, fee_tier=500)

        quote = await venue.quote(10**18, WETH, USDC)

        assert quote.amount_out == 3_500_000_000
        assert quote.gas_estimate == 120_000
        assert provider.eth_call.await_args.args[0] == QUOTER

    @pytest.mark.asyncio
    async def test_revert_maps_to_quote_revert(self):
        provider = AsyncMock()
        provider.eth_call.side_effect = SimulationRevertError("execution reverted")
        venue = UniswapV3Venue(provider, QUOTER, ROUTER, PERMIT2)

        with pytest.raises(QuoteRevertError):
            await venue.quote(1, WETH, USDC)

    @pytest.mark.asyncio
    async def test_empty_response(self):
        provider = AsyncMock()
        provider.eth_call.return_value = "0x"
        venue = UniswapV3Venue(provider, QUOTER, ROUTER, PERMIT2)

        with pytest.raises(QuoteRevertError):
            await venue.quote(1, WETH, USDC)

    @pytest.mark.asyncio
    async def test_zero_output(self):
        provider = AsyncMock()
        provider.eth_call.return_value = quoter_response(0)
        venue = UniswapV3Venue(provider, QUOTER, ROUTER, PERMIT2)

        with pytest.raises(LiquidityError):
            await venue.quote(1, WETH, USDC)

    @pytest.mark.asyncio
    async def test_swap_details(self):
        venue = UniswapV3Venue(AsyncMock(), QUOTER, ROUTER, PERMIT2, fee_tier=3000, source_id=2)
        quote = Quote(venue.venue_id, WETH, USDC, 10**18, amount_out=1_000_000)

        swap = await venue.swap(quote, TAKER, Decimal("0.5"))

        (details,) = decode(["(address,address,address,uint24,uint256,uint256)"], bytes.fromhex(swap.data[2:]))
        assert details[0].lower() == ROUTER
        assert details[2].lower() == USDC
        assert details[3] == 3000
        assert details[4] == 50
        assert swap.source == 2
        assert swap.min_amount_out == 995_000


def cp_provider(reserve0: int, reserve1: int, token0: str = WETH, pair: str = PAIR) -> AsyncMock:
    async def eth_call(to, data, *args, **kwargs):
        if to == FACTORY:
            return "0x" + encode(["address"], [pair]).hex()
        if data == abi.CP_PAIR_GET_RESERVES.encode():
            return "0x" + encode(["uint112", "uint112", "uint32"], [reserve0, reserve1, 0]).hex()
        if data == abi.CP_PAIR_TOKEN0.encode():
            return "0x" + encode(["address"], [token0]).hex()
        raise AssertionError(f"unexpected call to {to}")

    provider = AsyncMock()
    provider.eth_call.side_effect = eth_call
    return provider


class TestConstantProduct:
    def test_amount_out_formula(self):
        assert get_amount_out(1_000, 100_000, 200_000) == 1_974

    def test_zero_reserves(self):
        with pytest.raises(LiquidityError):
            get_amount_out(1_000, 0, 200_000)

    def test_zero_input(self):
        with pytest.raises(LiquidityError):
            get_amount_out(0, 100, 100)

    @pytest.mark.asyncio
    async def test_quote_orients_reserves(self):
        venue = ConstantProductVenue(cp_provider(200_000, 100_000, token0=USDC), FACTORY, ROUTER)

        quote = await venue.quote(1_000, WETH, USDC)

        # WETH is token1: reserve_in = 100_000, reserve_out = 200_000
        assert quote.amount_out == 1_974

    @pytest.mark.asyncio
    async def test_pair_lookup_cached(self):
        provider = cp_provider(100_000, 200_000)
        venue = ConstantProductVenue(provider, FACTORY, ROUTER)

        await venue.quote(1_000, WETH, USDC)
        await venue.quote(2_000, USDC, WETH)

        factory_calls = [c for c in provider.eth_call.await_args_list if c.args[0] == FACTORY]
        assert len(factory_calls) == 1

    @pytest.mark.asyncio
    async def test_missing_pair(self):
        venue = ConstantProductVenue(cp_provider(1, 1, pair="0x" + "00" * 20), FACTORY, ROUTER)
        with pytest.raises(LiquidityError):
            await venue.quote(1_000, WETH, USDC)
