"""
dex/adapters/base.py - Venue contract.

A venue prices a swap (quote) and produces the payload the taker contract
executes (swap). Venues raise typed QuoteError / InfraError subclasses;
the aggregator turns those into failed Quote records.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from core.constants import DEFAULT_SLIPPAGE_PCT, DEFAULT_VENUE_TIMEOUT_SECONDS
from core.models import Quote, SwapCalldata


class QuoteVenue(ABC):
    """One external liquidity source."""

    venue_id: str = ""
    timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS

    @abstractmethod
    async def quote(self, amount_in: int, token_in: str, token_out: str) -> Quote:
        """Successful quote, or raise."""

    @abstractmethod
    async def swap(
        self,
        quote: Quote,
        recipient: str,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
    ) -> SwapCalldata:
        """Execution payload for a previously quoted swap."""

    def __repr__(self):
        return f"{type(self).__name__}({self.venue_id})"


def min_amount_out(amount_out: int, slippage_pct: Decimal) -> int:
    """amount_out reduced by slippage, rounded down."""
    return amount_out * int((Decimal(100) - slippage_pct) * 100) // 10_000
