"""
strategy/lp_rewards.py - Redeem LP awarded by arbTakes.

A bucketTake awards LP in the taken bucket to the taker and the kicker. The
collector tracks the LP this signer gained from its own arbTakes (lender LP
read before and after the take) and redeems only that amount, never the
signer's other deposits. Redemption follows the pool's redeem_as setting;
the "then" modes move on to the second token once the first is empty.
"""

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from config.schema import LpRewardSettings
from core.constants import RedeemAs
from core.exceptions import KeeperError
from core.logging import get_logger
from core.models import Bucket, RemoveCollateral, RemoveQuoteToken
from execution.dispatcher import DispatchResult, ExecutionDispatcher
from protocol.pool import LendingPool

logger = get_logger(__name__)

QUOTE = "quote"
COLLATERAL = "collateral"

REDEEM_ORDER: dict[RedeemAs, tuple[str, ...]] = {
    RedeemAs.QUOTE: (QUOTE,),
    RedeemAs.COLLATERAL: (COLLATERAL,),
    RedeemAs.QUOTE_THEN_COLLATERAL: (QUOTE, COLLATERAL),
    RedeemAs.COLLATERAL_THEN_QUOTE: (COLLATERAL, QUOTE),
}


class LpRewardCollector:
    """
    Tracks and redeems arbTake LP rewards of one signer in one pool.

    Args:
        pool: Pool client
        pool_name: Pool name for logs
        settings: Redemption settings of the pool
        dispatcher: Action dispatcher of the signer
        signer_address: Keeper address
        delay_between_actions: Pause after each redemption
    """

    def __init__(
        self,
        pool: LendingPool,
        pool_name: str,
        settings: LpRewardSettings,
        dispatcher: ExecutionDispatcher,
        signer_address: str,
        delay_between_actions: float = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.settings = settings
        self.dispatcher = dispatcher
        self.signer_address = signer_address
        self.delay_between_actions = delay_between_actions
        self.sleep = sleep
        self.rewards: dict[int, Decimal] = {}
        self.log = logger.bind(pool=pool_name)

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    async def snapshot(self, bucket_index: int) -> Optional[Decimal]:
        """Lender LP before an arbTake; None when it cannot be read."""
        try:
            return await self.pool.get_lender_lp(bucket_index, self.signer_address)
        except KeeperError as e:
            self.log.warning(
                f"Cannot read LP in bucket {bucket_index}: {e.message}",
                extra={"context": {"bucket_index": bucket_index, "error_code": e.code.value}},
            )
            return None

    async def record_arb_take(self, bucket_index: int, lp_before: Decimal) -> Decimal:
        """Record the LP gained since lp_before. Returns the award."""
        lp_after = await self.snapshot(bucket_index)
        if lp_after is None:
            return Decimal("0")
        awarded = lp_after - lp_before
        if awarded > 0:
            self.add_reward(bucket_index, awarded)
        return max(awarded, Decimal("0"))

    def add_reward(self, bucket_index: int, lp: Decimal) -> None:
        if lp <= 0:
            return
        self.rewards[bucket_index] = self.rewards.get(bucket_index, Decimal("0")) + lp
        self.log.info(
            f"LP reward of {lp} in bucket {bucket_index}",
            extra={"context": {"bucket_index": bucket_index, "lp": str(lp)}},
        )

    def _subtract_reward(self, bucket_index: int, lp: Decimal) -> None:
        remaining = self.rewards.get(bucket_index, Decimal("0")) - lp
        if remaining <= 0:
            self.rewards.pop(bucket_index, None)
        else:
            self.rewards[bucket_index] = remaining

    # -------------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------------

    async def collect(self) -> list[DispatchResult]:
        """Redeem every tracked reward. A failing bucket does not stop the others."""
        results: list[DispatchResult] = []
        for bucket_index in [i for i, lp in self.rewards.items() if lp > 0]:
            try:
                results.extend(await self._collect_bucket(bucket_index))
            except KeeperError as e:
                self.log.warning(
                    f"LP reward redemption in bucket {bucket_index} failed: {e.message}",
                    extra={"context": {"bucket_index": bucket_index, "error_code": e.code.value}},
                )
        return results

    async def _collect_bucket(self, bucket_index: int) -> list[DispatchResult]:
        results = []
        for token in REDEEM_ORDER[self.settings.redeem_as]:
            if bucket_index not in self.rewards:
                break
            emptied, result = await self._redeem(bucket_index, token)
            if result is not None:
                results.append(result)
                await self.sleep(self.delay_between_actions)
            if not emptied:
                break
        return results

    async def _redeem(self, bucket_index: int, token: str) -> tuple[bool, Optional[DispatchResult]]:
        """
        Redeem the reward of a bucket as one token.

        Returns (token_empty, dispatch result). token_empty is True when the
        bucket holds no more of the token, so the next token may be tried.
        """
        bucket = await self.pool.get_bucket_by_index(bucket_index)
        available = bucket.quote_tokens if token == QUOTE else bucket.collateral
        if available <= 0 or available < self.settings.min_amount or bucket.exchange_rate <= 0:
            return True, None

        lp_balance = await self.pool.get_lender_lp(bucket_index, self.signer_address)
        if lp_balance <= 0:
            # Already redeemed elsewhere
            self.rewards.pop(bucket_index, None)
            return False, None
        reward_lp = min(self.rewards[bucket_index], lp_balance)

        amount = min(self._lp_to_token(bucket, reward_lp, token), available)
        if amount <= 0 or amount < self.settings.min_amount:
            return False, None

        if token == QUOTE:
            action = RemoveQuoteToken(self.pool.address, bucket_index, amount)
        else:
            action = RemoveCollateral(self.pool.address, bucket_index, amount)
        self.log.info(
            f"Redeeming LP reward in bucket {bucket_index} as {amount} {token}",
            extra={"context": {"bucket_index": bucket_index, "token": token, "amount": str(amount)}},
        )
        result = await self.dispatcher.dispatch(self.pool, action)
        if not result.success:
            return False, result
        if not result.is_dry_run:
            self._subtract_reward(bucket_index, self._token_to_lp(bucket, amount, token))
        return amount >= available, result

    @staticmethod
    def _lp_to_token(bucket: Bucket, lp: Decimal, token: str) -> Decimal:
        quote_value = lp * bucket.exchange_rate
        if token == QUOTE:
            return quote_value
        return quote_value / bucket.price if bucket.price > 0 else Decimal("0")

    @staticmethod
    def _token_to_lp(bucket: Bucket, amount: Decimal, token: str) -> Decimal:
        quote_value = amount if token == QUOTE else amount * bucket.price
        return quote_value / bucket.exchange_rate
