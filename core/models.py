# PATH: core/models.py
"""
Core data models for KEEPER.

Domain values read from the lending pool (prices, debt, collateral, bonds)
are Decimal in human units; the pool client converts from WAD. Amounts that
go on the wire (quotes, transactions) stay int in token units. NO FLOATS.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from core.constants import ActionType, ErrorCode, LeaseState


# ============================================================================
# LENDING POOL STATE
# ============================================================================

@dataclass
class Loan:
    """A borrower position, materialized per scan and never persisted."""
    borrower: str
    threshold_price: Decimal
    neutral_price: Decimal
    debt: Decimal
    collateral: Decimal
    is_kicked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "borrower": self.borrower,
            "threshold_price": str(self.threshold_price),
            "neutral_price": str(self.neutral_price),
            "debt": str(self.debt),
            "collateral": str(self.collateral),
            "is_kicked": self.is_kicked,
        }


@dataclass
class LiquidationAuction:
    """
    Auction state for a kicked borrower.

    kick_time is zero once the auction is fully settled and removed.
    """
    borrower: str
    kick_time: int
    reference_price: Decimal
    collateral: Decimal
    debt: Decimal
    kicker: str = ""
    price: Decimal = Decimal("0")
    neutral_price: Decimal = Decimal("0")
    bond_size: Decimal = Decimal("0")

    @property
    def is_active(self) -> bool:
        return self.kick_time > 0

    @property
    def is_bad_debt(self) -> bool:
        return self.collateral == 0 and self.debt > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "borrower": self.borrower,
            "kick_time": self.kick_time,
            "reference_price": str(self.reference_price),
            "collateral": str(self.collateral),
            "debt": str(self.debt),
            "kicker": self.kicker,
            "price": str(self.price),
            "is_active": self.is_active,
            "is_bad_debt": self.is_bad_debt,
        }


@dataclass
class KickerInfo:
    """Bond amounts held by the pool for a kicker."""
    claimable: Decimal
    locked: Decimal

    @property
    def can_withdraw(self) -> bool:
        return self.locked == 0 and self.claimable > 0


@dataclass
class Bucket:
    """A price bucket of pool deposit."""
    index: int
    price: Decimal
    quote_tokens: Decimal = Decimal("0")
    collateral: Decimal = Decimal("0")
    lp: Decimal = Decimal("0")
    # Quote token value of one LP
    exchange_rate: Decimal = Decimal("1")


@dataclass
class PoolPrices:
    """Pool reference prices."""
    hpb: Decimal
    hpb_index: int
    htp: Decimal
    lup: Decimal
    lup_index: int
    llb: Decimal = Decimal("0")


# ============================================================================
# QUOTES
# ============================================================================

@dataclass
class Quote:
    """
    Output estimate from one liquidity venue.

    Ephemeral: created per lookup and never reused beyond one decision.
    A failed lookup keeps amount_out=None and carries the error.
    """
    venue: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: Optional[int] = None
    gas_estimate: Optional[int] = None
    latency_ms: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.error is None and self.amount_out is not None and self.amount_out > 0

    @property
    def rate(self) -> Decimal:
        """amount_out per unit amount_in (raw token units)."""
        if not self.is_success or self.amount_in <= 0:
            return Decimal("0")
        return Decimal(self.amount_out) / Decimal(self.amount_in)

    def matches(self, amount_in: int, token_in: str, token_out: str) -> bool:
        return (
            self.amount_in == amount_in
            and self.token_in.lower() == token_in.lower()
            and self.token_out.lower() == token_out.lower()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue": self.venue,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out) if self.amount_out is not None else None,
            "gas_estimate": self.gas_estimate,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
        }


@dataclass
class SwapCalldata:
    """Execution payload of a venue, consumed by the taker contract."""
    venue: str
    router: str
    data: str
    source: int
    min_amount_out: int = 0


# ============================================================================
# NONCES AND SETTLEMENT
# ============================================================================

@dataclass
class NonceLease:
    """A nonce value claimed by one submission for one signer."""
    signer: str
    nonce: int
    state: LeaseState = LeaseState.ALLOCATED

    @property
    def in_flight(self) -> bool:
        return self.state == LeaseState.ALLOCATED


@dataclass
class SettlementAttempt:
    """Progress of one settlement drive."""
    borrower: str
    iterations: int = 0
    completed: bool = False
    last_error: Optional[str] = None


@dataclass
class SettlementResult:
    """Outcome of settle_auction_completely."""
    success: bool
    completed: bool
    iterations: int
    reason: str

    @property
    def is_partial(self) -> bool:
        return self.success and not self.completed


# ============================================================================
# ACTIONS
# ============================================================================

@dataclass(frozen=True)
class Kick:
    """Start a liquidation auction against a borrower."""
    pool_address: str
    borrower: str
    limit_index: int
    debt: Decimal = Decimal("0")
    threshold_price: Decimal = Decimal("0")
    neutral_price: Decimal = Decimal("0")
    feed_price: Decimal = Decimal("0")
    action_type: ActionType = ActionType.KICK


@dataclass(frozen=True)
class Take:
    """Buy auctioned collateral with external venue liquidity."""
    pool_address: str
    borrower: str
    auction_price: Decimal
    collateral: Decimal
    swap: SwapCalldata
    quote: Optional[Quote] = None
    action_type: ActionType = ActionType.TAKE


@dataclass(frozen=True)
class ArbTake:
    """Buy auctioned collateral with a pool bucket's deposit."""
    pool_address: str
    borrower: str
    bucket_index: int
    auction_price: Decimal = Decimal("0")
    bucket_price: Decimal = Decimal("0")
    deposit_take: bool = False
    action_type: ActionType = ActionType.ARB_TAKE


@dataclass(frozen=True)
class Settle:
    """Settle a bad-debt auction across up to max_depth buckets."""
    pool_address: str
    borrower: str
    max_depth: int
    action_type: ActionType = ActionType.SETTLE


@dataclass(frozen=True)
class WithdrawBonds:
    """Withdraw claimable kicker bonds."""
    pool_address: str
    recipient: str
    max_amount: int
    borrower: str = ""
    action_type: ActionType = ActionType.WITHDRAW_BONDS


@dataclass(frozen=True)
class RemoveQuoteToken:
    """Redeem LP in a bucket for quote token."""
    pool_address: str
    bucket_index: int
    amount: Decimal
    borrower: str = ""
    action_type: ActionType = ActionType.REMOVE_QUOTE_TOKEN


@dataclass(frozen=True)
class RemoveCollateral:
    """Redeem LP in a bucket for collateral."""
    pool_address: str
    bucket_index: int
    amount: Decimal
    borrower: str = ""
    action_type: ActionType = ActionType.REMOVE_COLLATERAL


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True)
class TxRequest:
    """Unsigned contract call."""
    to: str
    data: str
    method: str
    args: tuple = ()
    value: int = 0
    gas_limit: Optional[int] = None

    def to_call(self, sender: str) -> Dict[str, Any]:
        """eth_call / eth_estimateGas parameter object."""
        return {
            "from": sender,
            "to": self.to,
            "data": self.data,
            "value": hex(self.value),
        }


@dataclass
class TxReceipt:
    """Mined transaction outcome."""
    tx_hash: str
    status: int
    block_number: int = 0
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1
