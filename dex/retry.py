"""
dex/retry.py - Retry policy for rate-limited venues.

A RetryPolicy is passed into a venue client; the venue stays free of
backoff bookkeeping. Delays grow by `multiplier` from `base_delay` and are
capped at `max_delay`. A RateLimitError's retry_after hint is honoured when
it is larger than the computed delay, still within the cap.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from core.exceptions import RateLimitError
from core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff."""
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0
    retry_on: tuple[type[BaseException], ...] = (RateLimitError,)
    sleep: Sleep = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Call fn until it succeeds or attempts run out.

        Exceptions outside retry_on propagate immediately. The last
        retryable exception propagates when attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await fn()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        f"Giving up after {attempt} attempts: {e}",
                        extra={"context": {"attempts": attempt}},
                    )
                    raise

                delay = self.delay_for(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    delay = min(max(delay, retry_after), self.max_delay)

                logger.info(
                    f"Attempt {attempt} failed, retrying in {delay:.2f}s",
                    extra={"context": {"attempt": attempt, "delay": delay, "error": str(e)}},
                )
                await self.sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_attempts=1)
