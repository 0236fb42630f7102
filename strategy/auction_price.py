"""
strategy/auction_price.py - Dutch auction price decay.

The protocol halves the auction price on a fixed schedule:

    6 halvings of 20 minutes   (first 2 hours)
    6 halvings of 2 hours      (next 12 hours)
    58 halvings of 1 hour      (next 58 hours)

Inside a step the exponent grows linearly with time, so

    price = start * 2 ** -(i + fraction)

where i is the number of completed halvings. After the last step the price
is zero. An auction opens at 256x the kick reference price.
"""

from decimal import Decimal
from typing import Callable, Union

from core.constants import AUCTION_OPENING_MULTIPLIER
from core.time import elapsed_seconds, now_seconds

Number = Union[int, float, Decimal]

HALVING_DURATIONS: tuple[int, ...] = (
    (20 * 60,) * 6
    + (2 * 60 * 60,) * 6
    + (60 * 60,) * 58
)

AUCTION_DURATION_SECONDS = sum(HALVING_DURATIONS)

_TWO = Decimal(2)


def auction_price(reference_price: Decimal, elapsed: Number) -> Decimal:
    """
    Price of an auction that started at reference_price, elapsed seconds ago.

    auction_price(p, 0) == p. Non-increasing in elapsed time; zero once the
    schedule is exhausted.

    Raises:
        ValueError: If elapsed is negative
    """
    seconds = Decimal(str(elapsed))
    if seconds < 0:
        raise ValueError(f"elapsed must be >= 0, got {elapsed}")
    if seconds == 0:
        return reference_price

    step_start = 0
    for i, duration in enumerate(HALVING_DURATIONS):
        if seconds < step_start + duration:
            fraction = (seconds - step_start) / Decimal(duration)
            return reference_price * _TWO ** -(Decimal(i) + fraction)
        step_start += duration
    return Decimal("0")


def opening_price(kick_reference_price: Decimal) -> Decimal:
    """Auction start price for a kick reference price."""
    return kick_reference_price * AUCTION_OPENING_MULTIPLIER


class AuctionPriceModel:
    """
    Auction price at a point in time.

    Args:
        clock: Returns current unix seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], Number] = now_seconds):
        self.clock = clock

    def elapsed(self, kick_time: int, now: Number | None = None) -> int:
        current = self.clock() if now is None else now
        return elapsed_seconds(kick_time, current)

    def price_at(
        self,
        kick_reference_price: Decimal,
        kick_time: int,
        now: Number | None = None,
    ) -> Decimal:
        """Current price of an auction kicked at kick_time."""
        return auction_price(
            opening_price(kick_reference_price),
            self.elapsed(kick_time, now),
        )
