"""
strategy/bonds.py - Kicker bond withdrawal.

Claimable bond can only be withdrawn when nothing is locked. A locked bond
is usually held by an auction the keeper kicked that ended in bad debt, so
with settlement enabled the collector first tries a reactive settlement.
"""

from typing import Optional

from config.schema import PoolConfig
from core.constants import MAX_UINT_256
from core.exceptions import KeeperError
from core.logging import get_logger
from core.models import KickerInfo, WithdrawBonds
from execution.dispatcher import DispatchResult, ExecutionDispatcher
from protocol.pool import LendingPool
from strategy.settlement import SettlementEngine

logger = get_logger(__name__)


class BondCollector:
    """Withdraws claimable bonds of one signer from one pool."""

    def __init__(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        dispatcher: ExecutionDispatcher,
        signer_address: str,
        settlement: Optional[SettlementEngine] = None,
    ):
        self.pool = pool
        self.pool_config = pool_config
        self.dispatcher = dispatcher
        self.signer_address = signer_address
        self.settlement = settlement
        self.log = logger.bind(pool=pool_config.name)

    async def collect(self) -> Optional[DispatchResult]:
        """
        Withdraw when possible. Returns the dispatch result, or None when
        there was nothing to withdraw.
        """
        info = await self.pool.get_kicker_info(self.signer_address)

        if info.locked > 0:
            if not await self._unlock():
                self.log.debug(
                    f"Bond still locked ({info.locked}), not withdrawing",
                    extra={"context": {"locked": str(info.locked)}},
                )
                return None
            info = await self.pool.get_kicker_info(self.signer_address)

        if not info.can_withdraw:
            return None
        return await self._withdraw(info)

    async def _unlock(self) -> bool:
        if self.settlement is None or not self.pool_config.settlement.enabled:
            return False
        try:
            return await self.settlement.try_reactive_settlement()
        except KeeperError as e:
            self.log.warning(f"Reactive settlement failed: {e.message}")
            return False

    async def _withdraw(self, info: KickerInfo) -> DispatchResult:
        self.log.info(
            f"Withdrawing {info.claimable} claimable bond",
            extra={"context": {"claimable": str(info.claimable)}},
        )
        return await self.dispatcher.dispatch(
            self.pool,
            WithdrawBonds(
                pool_address=self.pool.address,
                recipient=self.signer_address,
                max_amount=MAX_UINT_256,
            ),
        )
