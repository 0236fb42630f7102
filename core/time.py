# PATH: core/time.py
"""
Time utilities for KEEPER.

Auction ages are measured in whole seconds against chain timestamps.
"""

import time
from typing import Optional


def now_seconds() -> int:
    """Get current Unix timestamp in whole seconds."""
    return int(time.time())


def elapsed_seconds(
    since: int,
    current_time: Optional[float] = None,
) -> int:
    """
    Seconds elapsed since a unix timestamp, floored at zero.

    Args:
        since: Unix timestamp in seconds (e.g. auction kick time)
        current_time: Current time (defaults to now)
    """
    current = time.time() if current_time is None else current_time
    return max(0, int(current - since))


def is_older_than(
    timestamp: int,
    min_age_seconds: float,
    current_time: Optional[float] = None,
) -> bool:
    """
    Check if a timestamp is at least min_age_seconds old.

    Args:
        timestamp: Unix timestamp in seconds
        min_age_seconds: Minimum required age
        current_time: Current time (defaults to now)
    """
    current = time.time() if current_time is None else current_time
    return current - timestamp >= min_age_seconds
