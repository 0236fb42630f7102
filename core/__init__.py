"""
core - Core utilities and models for KEEPER.

This package contains:
- models.py: Data models (Loan, LiquidationAuction, Quote, actions, tx)
- constants.py: Enums, protocol constants and defaults
- exceptions.py: Typed exceptions with error codes
- math.py: WAD / token unit conversions (no float)
- time.py: Clock helpers and auction ages
- logging.py: Structured JSON logging
"""

from core.constants import (
    ActionType,
    ErrorCode,
    LeaseState,
    PoolPriceReference,
    PriceSource,
    VenueId,
    WAD,
)
from core.exceptions import (
    ConfigError,
    ExecutionError,
    IndexerError,
    InfraError,
    InvariantError,
    KeeperError,
    LiquidityError,
    QuoteError,
    RateLimitError,
    RPCError,
    SimulationRevertError,
)
from core.logging import get_logger, setup_logging
from core.models import (
    ArbTake,
    Bucket,
    Kick,
    KickerInfo,
    LiquidationAuction,
    Loan,
    PoolPrices,
    Quote,
    Settle,
    SettlementResult,
    SwapCalldata,
    Take,
    TxReceipt,
    TxRequest,
    WithdrawBonds,
)

__all__ = [
    # Constants
    "ActionType",
    "ErrorCode",
    "LeaseState",
    "PoolPriceReference",
    "PriceSource",
    "VenueId",
    "WAD",
    # Exceptions
    "ConfigError",
    "ExecutionError",
    "IndexerError",
    "InfraError",
    "InvariantError",
    "KeeperError",
    "LiquidityError",
    "QuoteError",
    "RateLimitError",
    "RPCError",
    "SimulationRevertError",
    # Models
    "ArbTake",
    "Bucket",
    "Kick",
    "KickerInfo",
    "LiquidationAuction",
    "Loan",
    "PoolPrices",
    "Quote",
    "Settle",
    "SettlementResult",
    "SwapCalldata",
    "Take",
    "TxReceipt",
    "TxRequest",
    "WithdrawBonds",
    # Logging
    "get_logger",
    "setup_logging",
]
