# PATH: core/constants.py
"""
Constants for KEEPER.

Contains enums, protocol constants and configuration defaults.
"""

from decimal import Decimal
from enum import Enum
from typing import Final

# =============================================================================
# PROTOCOL CONSTANTS
# =============================================================================

WAD: Final[int] = 10**18

# Highest bucket index the pool accepts as a kick limit (no limit)
MAX_FENWICK_INDEX: Final[int] = 7388

MAX_UINT_256: Final[int] = 2**256 - 1

ZERO_ADDRESS: Final[str] = "0x" + "0" * 40

SECONDS_PER_DAY: Final[int] = 86_400
SECONDS_PER_YEAR: Final[int] = 31_540_000

# Opening price of an auction relative to the kick reference price
AUCTION_OPENING_MULTIPLIER: Final[int] = 256

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_DELAY_BETWEEN_ACTIONS = 1.0
DEFAULT_DELAY_BETWEEN_RUNS = 15.0
DEFAULT_GAS_LIMIT_PADDING_PCT = 10
DEFAULT_GAS_PRICE_MULTIPLIER = Decimal("1")
DEFAULT_CONFIRMATION_TIMEOUT = 120.0

DEFAULT_MIN_AUCTION_AGE = 3600
DEFAULT_SETTLEMENT_MAX_ITERATIONS = 10
DEFAULT_SETTLEMENT_BUCKET_DEPTH = 50
# Depth used when only simulating settle
SETTLE_SIMULATION_BUCKET_DEPTH = 10
SETTLE_GAS_LIMIT = 800_000

DEFAULT_VENUE_TIMEOUT_SECONDS = 10.0
DEFAULT_SLIPPAGE_PCT = Decimal("1")
DEFAULT_UNISWAP_FEE_TIER = 3000
SWAP_DEADLINE_SECONDS = 1800


class ActionType(str, Enum):
    """On-chain actions the keeper performs."""
    KICK = "KICK"
    TAKE = "TAKE"
    ARB_TAKE = "ARB_TAKE"
    SETTLE = "SETTLE"
    WITHDRAW_BONDS = "WITHDRAW_BONDS"
    REMOVE_QUOTE_TOKEN = "REMOVE_QUOTE_TOKEN"
    REMOVE_COLLATERAL = "REMOVE_COLLATERAL"


class RedeemAs(str, Enum):
    """Token an LP reward is redeemed as; X_then_Y falls back to Y once X is empty."""
    QUOTE = "quote"
    COLLATERAL = "collateral"
    QUOTE_THEN_COLLATERAL = "quote_then_collateral"
    COLLATERAL_THEN_QUOTE = "collateral_then_quote"


class VenueId(str, Enum):
    """External liquidity venues."""
    ONEINCH = "oneinch"
    UNISWAP_V3 = "uniswap_v3"
    CONSTANT_PRODUCT = "constant_product"


class PriceSource(str, Enum):
    """Where a pool's feed price comes from."""
    FIXED = "fixed"
    COINGECKO = "coingecko"
    POOL = "pool"


class PoolPriceReference(str, Enum):
    """Pool-internal reference prices."""
    HPB = "hpb"
    HTP = "htp"
    LUP = "lup"
    LLB = "llb"


class LeaseState(str, Enum):
    """Nonce lease lifecycle."""
    ALLOCATED = "ALLOCATED"
    CONFIRMED = "CONFIRMED"
    RELEASED = "RELEASED"


class ErrorCode(str, Enum):
    """
    Error codes for typed exceptions.

    Grouped by the recovery policy the keeper applies.
    """
    # Configuration (fatal at startup)
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # Transient infrastructure (skip and continue)
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"
    INFRA_TIMEOUT = "INFRA_TIMEOUT"
    INFRA_RATE_LIMIT = "INFRA_RATE_LIMIT"
    INFRA_INDEXER_ERROR = "INFRA_INDEXER_ERROR"
    INFRA_HTTP_ERROR = "INFRA_HTTP_ERROR"

    # Quotes
    QUOTE_REVERT = "QUOTE_REVERT"
    QUOTE_TIMEOUT = "QUOTE_TIMEOUT"
    QUOTE_MALFORMED = "QUOTE_MALFORMED"
    QUOTE_NO_LIQUIDITY = "QUOTE_NO_LIQUIDITY"
    QUOTE_POOL_MISSING = "QUOTE_POOL_MISSING"

    # Simulation-predicted revert (not eligible now)
    SIMULATION_REVERT = "SIMULATION_REVERT"

    # Execution
    EXECUTION_SUBMIT_FAILED = "EXECUTION_SUBMIT_FAILED"
    EXECUTION_REVERTED = "EXECUTION_REVERTED"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"

    # Invariant violations
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"

    UNKNOWN = "UNKNOWN"
