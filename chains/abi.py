"""
chains/abi.py - Contract call encoding and decoding.

Selectors are derived from the canonical signature once at import time.
Calldata is a 0x-prefixed hex string, the same form eth_call expects.
"""

from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from core.exceptions import InvariantError


class Function:
    """A contract function: signature plus return types."""

    def __init__(self, signature: str, returns: Sequence[str] = ()):
        self.signature = signature
        self.name = signature.split("(", 1)[0]
        self.input_types = _split_types(signature[len(self.name) + 1:-1])
        self.output_types = list(returns)
        self.selector = function_signature_to_4byte_selector(signature)

    @property
    def selector_hex(self) -> str:
        return "0x" + self.selector.hex()

    def encode(self, *args: Any) -> str:
        if len(args) != len(self.input_types):
            raise InvariantError(
                f"{self.name} expects {len(self.input_types)} args, got {len(args)}"
            )
        body = encode(self.input_types, list(args)) if self.input_types else b""
        return "0x" + (self.selector + body).hex()

    def decode(self, data: str) -> tuple:
        """
        Decode return data.

        Raises:
            InvariantError: On empty or malformed return data
        """
        raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        if not raw and self.output_types:
            raise InvariantError(f"{self.name} returned no data")
        try:
            return decode(self.output_types, raw)
        except DecodingError as e:
            raise InvariantError(
                f"{self.name} returned malformed data",
                details={"length": len(raw), "error": str(e)},
            ) from e

    def __repr__(self):
        return f"Function({self.signature})"


def _split_types(arg_list: str) -> list[str]:
    """Split a top-level comma-separated type list, tuples kept intact."""
    if not arg_list:
        return []
    types, depth, current = [], 0, ""
    for ch in arg_list:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
        else:
            current += ch
    types.append(current)
    return types


def checksum(address: str) -> str:
    return to_checksum_address(address)


# =============================================================================
# LENDING POOL
# =============================================================================

POOL_KICK = Function("kick(address,uint256)")
POOL_BUCKET_TAKE = Function("bucketTake(address,bool,uint256)")
POOL_SETTLE = Function("settle(address,uint256)", returns=["uint256", "uint256"])
POOL_WITHDRAW_BONDS = Function("withdrawBonds(address,uint256)", returns=["uint256"])
POOL_AUCTION_INFO = Function(
    "auctionInfo(address)",
    returns=[
        "address",  # kicker
        "uint256",  # bondFactor
        "uint256",  # bondSize
        "uint256",  # kickTime
        "uint256",  # referencePrice
        "uint256",  # neutralPrice
        "uint256",  # debtToCollateral
        "address",  # head
        "address",  # next
        "address",  # prev
    ],
)
POOL_KICKER_INFO = Function("kickerInfo(address)", returns=["uint256", "uint256"])
POOL_LENDER_INFO = Function("lenderInfo(uint256,address)", returns=["uint256", "uint256"])
POOL_REMOVE_QUOTE_TOKEN = Function("removeQuoteToken(uint256,uint256)", returns=["uint256", "uint256"])
POOL_REMOVE_COLLATERAL = Function("removeCollateral(uint256,uint256)", returns=["uint256", "uint256"])
POOL_QUOTE_TOKEN = Function("quoteTokenAddress()", returns=["address"])
POOL_COLLATERAL = Function("collateralAddress()", returns=["address"])

# =============================================================================
# POOL INFO UTILS
# =============================================================================

INFO_BORROWER = Function(
    "borrowerInfo(address,address)",
    returns=["uint256", "uint256", "uint256", "uint256"],
)
INFO_AUCTION_STATUS = Function(
    "auctionStatus(address,address)",
    returns=[
        "uint256",  # kickTime
        "uint256",  # collateral
        "uint256",  # debtToCover
        "bool",     # isCollateralized
        "uint256",  # price
        "uint256",  # neutralPrice
        "uint256",  # referencePrice
        "uint256",  # debtToCollateral
        "uint256",  # bondFactor
    ],
)
INFO_POOL_PRICES = Function(
    "poolPricesInfo(address)",
    returns=["uint256", "uint256", "uint256", "uint256", "uint256", "uint256"],
)
INFO_BUCKET = Function(
    "bucketInfo(address,uint256)",
    returns=["uint256", "uint256", "uint256", "uint256", "uint256", "uint256"],
)
INFO_PRICE_TO_INDEX = Function("priceToIndex(uint256)", returns=["uint256"])
INFO_INDEX_TO_PRICE = Function("indexToPrice(uint256)", returns=["uint256"])
INFO_POOL_LOANS = Function(
    "poolLoansInfo(address)",
    returns=["uint256", "uint256", "address", "uint256", "uint256"],
)

# =============================================================================
# TAKER / TOKENS / VENUES
# =============================================================================

TAKER_TAKE_WITH_SWAP = Function(
    "takeWithAtomicSwap(address,address,uint256,uint256,uint8,address,bytes)"
)

ERC20_DECIMALS = Function("decimals()", returns=["uint8"])
ERC20_BALANCE_OF = Function("balanceOf(address)", returns=["uint256"])
ERC20_ALLOWANCE = Function("allowance(address,address)", returns=["uint256"])

QUOTER_V2_EXACT_INPUT_SINGLE = Function(
    "quoteExactInputSingle((address,address,uint256,uint24,uint160))",
    returns=["uint256", "uint160", "uint32", "uint256"],
)

CP_FACTORY_GET_PAIR = Function("getPair(address,address)", returns=["address"])
CP_PAIR_GET_RESERVES = Function("getReserves()", returns=["uint112", "uint112", "uint32"])
CP_PAIR_TOKEN0 = Function("token0()", returns=["address"])
