"""
dex/aggregator.py - Multi-venue quote aggregation.

Every venue is asked concurrently, each under its own timeout. A failing
venue never aborts the others: its outcome becomes a failed Quote with an
error code. When no venue succeeds the caller gets an empty list (or None
from best_quote) and treats the action as not profitable yet.
"""

import asyncio
import time
from typing import Sequence

from core.constants import ErrorCode
from core.exceptions import KeeperError
from core.logging import get_logger
from core.models import Quote
from dex.adapters.base import QuoteVenue

logger = get_logger(__name__)


def select_best(quotes: Sequence[Quote]) -> Quote | None:
    """
    Highest amount_out per unit amount_in among successful quotes.

    Ties keep the earlier quote (venue order).
    """
    best: Quote | None = None
    for q in quotes:
        if not q.is_success:
            continue
        if best is None or q.rate > best.rate:
            best = q
    return best


class QuoteAggregator:
    """Fan-out quoting across venues."""

    async def _quote_one(
        self,
        venue: QuoteVenue,
        amount_in: int,
        token_in: str,
        token_out: str,
    ) -> Quote:
        start_ms = int(time.time() * 1000)

        def failed(message: str, code: ErrorCode) -> Quote:
            return Quote(
                venue=venue.venue_id,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                latency_ms=int(time.time() * 1000) - start_ms,
                error=message,
                error_code=code,
            )

        try:
            return await asyncio.wait_for(
                venue.quote(amount_in, token_in, token_out),
                timeout=venue.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return failed(f"timed out after {venue.timeout_seconds}s", ErrorCode.QUOTE_TIMEOUT)
        except KeeperError as e:
            return failed(e.message, e.code)
        except Exception as e:
            return failed(f"{type(e).__name__}: {e}", ErrorCode.UNKNOWN)

    async def collect(
        self,
        venues: Sequence[QuoteVenue],
        amount_in: int,
        token_in: str,
        token_out: str,
    ) -> list[Quote]:
        """Every venue's outcome, successful or not, in venue order."""
        if not venues:
            return []
        return list(await asyncio.gather(
            *(self._quote_one(v, amount_in, token_in, token_out) for v in venues)
        ))

    async def quote(
        self,
        venues: Sequence[QuoteVenue],
        amount_in: int,
        token_in: str,
        token_out: str,
    ) -> list[Quote]:
        """Successful quotes only; failures are logged and dropped."""
        outcomes = await self.collect(venues, amount_in, token_in, token_out)
        quotes = []
        for q in outcomes:
            if q.is_success:
                quotes.append(q)
                continue
            logger.warning(
                f"Venue {q.venue} failed: {q.error}",
                extra={"context": {
                    "venue": q.venue,
                    "error_code": q.error_code.value if q.error_code else None,
                    "token_in": token_in,
                    "token_out": token_out,
                    "amount_in": str(amount_in),
                }},
            )
        return quotes

    async def best_quote(
        self,
        venues: Sequence[QuoteVenue],
        amount_in: int,
        token_in: str,
        token_out: str,
    ) -> Quote | None:
        quotes = await self.quote(venues, amount_in, token_in, token_out)
        best = select_best(quotes)
        if best is None:
            logger.info(
                "No venue returned a usable quote",
                extra={"context": {"venues": [v.venue_id for v in venues]}},
            )
        return best
