"""
strategy/settlement.py - Bad-debt settlement.

An auction whose collateral is gone but whose debt is not needs a settle
call to write the debt off and release the kicker's bond. Flow per auction:

    age check -> needs_settlement -> bot incentive (optional) -> settle loop

Each settle call clears at most max_bucket_depth buckets, so a large
auction may need several calls. The loop re-reads the auction after every
call; kick_time == 0 means the auction is gone.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from config.schema import SettlementSettings
from core.exceptions import KeeperError
from core.logging import get_logger
from core.math import short_address
from core.models import LiquidationAuction, Settle, SettlementAttempt, SettlementResult
from core.time import is_older_than, now_seconds
from discovery.subgraph import IndexedAuction, SubgraphClient
from execution.dispatcher import ExecutionDispatcher
from protocol.pool import LendingPool

logger = get_logger(__name__)


@dataclass
class SettlementCheck:
    needs: bool
    reason: str
    auction: Optional[LiquidationAuction] = None


@dataclass
class IncentiveCheck:
    has_incentive: bool
    reason: str


class SettlementEngine:
    """
    Settlement for one pool and one signer.

    Args:
        pool: Lending pool client
        settings: Pool settlement settings
        indexer: Subgraph client
        dispatcher: Action dispatcher of the signer
        signer_address: Keeper address (kicker identity)
        dry_run: Never send settle transactions
        delay_between_actions: Pause between settle calls and auctions
        clock: Unix seconds (injectable for tests)
    """

    def __init__(
        self,
        pool: LendingPool,
        settings: SettlementSettings,
        indexer: SubgraphClient,
        dispatcher: ExecutionDispatcher,
        signer_address: str,
        dry_run: bool = False,
        delay_between_actions: float = 1.0,
        clock: Callable[[], float] = now_seconds,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.settings = settings
        self.indexer = indexer
        self.dispatcher = dispatcher
        self.signer_address = signer_address
        self.dry_run = dry_run
        self.delay_between_actions = delay_between_actions
        self.clock = clock
        self.sleep = sleep
        self._in_progress: set[tuple[str, str]] = set()
        self.log = logger.bind(pool=pool.name)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def is_auction_old_enough(self, auction: IndexedAuction) -> bool:
        return is_older_than(auction.kick_time, self.settings.min_auction_age, self.clock())

    async def needs_settlement(self, borrower: str) -> SettlementCheck:
        """
        True only for an active auction with debt, no collateral, and a
        settle call that simulates without reverting.
        """
        try:
            auction = await self.pool.get_auction(borrower)
        except KeeperError as e:
            return SettlementCheck(False, f"could not read auction: {e.message}")

        if not auction.is_active:
            return SettlementCheck(False, "no active auction (kick time is 0)", auction)
        if auction.debt == 0:
            return SettlementCheck(False, "no debt remaining", auction)
        if auction.collateral > 0:
            return SettlementCheck(
                False,
                f"auction still has {auction.collateral} collateral to take",
                auction,
            )

        try:
            settleable = await self.pool.simulate_settle(borrower, self.signer_address)
        except KeeperError as e:
            return SettlementCheck(False, f"settle simulation failed: {e.message}", auction)
        if not settleable:
            return SettlementCheck(False, "settle simulation reverts, not settleable yet", auction)

        return SettlementCheck(True, f"bad debt of {auction.debt} with no collateral", auction)

    async def check_bot_incentive(self, borrower: str) -> IncentiveCheck:
        """
        The keeper has an incentive when it kicked the auction. An unreadable
        bond amount does not remove the incentive.
        """
        try:
            auction = await self.pool.get_auction(borrower)
        except KeeperError as e:
            return IncentiveCheck(False, f"could not read auction: {e.message}")

        if auction.kicker.lower() != self.signer_address.lower():
            return IncentiveCheck(False, f"not the kicker (kicker {short_address(auction.kicker)})")

        try:
            info = await self.pool.get_kicker_info(self.signer_address)
        except KeeperError as e:
            self.log.warning(
                f"Kicker bond unreadable for {short_address(borrower)}: {e.message}",
                extra={"context": {"borrower": borrower}},
            )
            return IncentiveCheck(True, "keeper is kicker (bond amount unreadable)")

        return IncentiveCheck(True, f"keeper is kicker with {info.claimable} claimable bond")

    # -------------------------------------------------------------------------
    # Settling
    # -------------------------------------------------------------------------

    async def settle_auction_completely(self, borrower: str) -> SettlementResult:
        max_iterations = self.settings.max_iterations
        depth = self.settings.max_bucket_depth

        if self.dry_run:
            self.log.info(
                f"DRY RUN: would settle {short_address(borrower)} in up to {max_iterations} iterations",
                extra={"context": {"borrower": borrower}},
            )
            return SettlementResult(
                success=True,
                completed=True,
                iterations=1,
                reason="dry run, settlement skipped",
            )

        attempt = SettlementAttempt(borrower=borrower)
        for iteration in range(1, max_iterations + 1):
            attempt.iterations = iteration
            result = await self.dispatcher.dispatch(
                self.pool,
                Settle(pool_address=self.pool.address, borrower=borrower, max_depth=depth),
            )
            if not result.success:
                attempt.last_error = result.error
                self.log.error(
                    f"Settlement iteration {iteration} failed for {short_address(borrower)}: {result.error}",
                    extra={"context": {"borrower": borrower, "iteration": iteration}},
                )
                return SettlementResult(
                    success=False,
                    completed=False,
                    iterations=iteration,
                    reason=f"settlement failed: {result.error}",
                )

            try:
                auction = await self.pool.get_auction(borrower)
            except KeeperError as e:
                return SettlementResult(
                    success=False,
                    completed=False,
                    iterations=iteration,
                    reason=f"could not re-read auction: {e.message}",
                )

            if not auction.is_active:
                attempt.completed = True
                return SettlementResult(
                    success=True,
                    completed=True,
                    iterations=iteration,
                    reason="auction fully settled and removed",
                )

            self.log.debug(
                f"Partial settlement of {short_address(borrower)}, auction remains",
                extra={"context": {"borrower": borrower, "iteration": iteration, "debt": str(auction.debt)}},
            )
            if iteration < max_iterations:
                await self.sleep(self.delay_between_actions)

        return SettlementResult(
            success=True,
            completed=False,
            iterations=max_iterations,
            reason=f"partial settlement after {max_iterations} iterations",
        )

    async def find_settleable_auctions(self) -> list[IndexedAuction]:
        """Unsettled auctions that are old enough and settleable now."""
        try:
            auctions = await self.indexer.get_unsettled_auctions(self.pool.address)
        except KeeperError as e:
            self.log.warning(f"Could not query unsettled auctions: {e.message}")
            return []

        settleable = []
        for auction in auctions:
            if not self.is_auction_old_enough(auction):
                self.log.debug(
                    f"Auction {short_address(auction.borrower)} too young to settle",
                    extra={"context": {"borrower": auction.borrower, "kick_time": auction.kick_time}},
                )
                continue

            check = await self.needs_settlement(auction.borrower)
            if check.needs:
                settleable.append(auction)
            else:
                self.log.debug(
                    f"Auction {short_address(auction.borrower)} does not need settlement: {check.reason}",
                    extra={"context": {"borrower": auction.borrower}},
                )

        if settleable:
            self.log.info(f"Found {len(settleable)} auctions that need settlement")
        return settleable

    async def process_auction(self, auction: IndexedAuction) -> Optional[SettlementResult]:
        """Settle one auction unless another sweep is already on it."""
        key = (self.pool.address.lower(), auction.borrower.lower())
        if key in self._in_progress:
            self.log.debug(
                f"Settlement of {short_address(auction.borrower)} already in progress",
                extra={"context": {"borrower": auction.borrower}},
            )
            return None

        self._in_progress.add(key)
        try:
            if not self.is_auction_old_enough(auction):
                return None

            check = await self.needs_settlement(auction.borrower)
            if not check.needs:
                self.log.debug(f"Skipping {short_address(auction.borrower)}: {check.reason}")
                return None

            if self.settings.check_bot_incentive:
                incentive = await self.check_bot_incentive(auction.borrower)
                if not incentive.has_incentive:
                    self.log.info(
                        f"Skipping settlement of {short_address(auction.borrower)}: {incentive.reason}",
                        extra={"context": {"borrower": auction.borrower}},
                    )
                    return None

            result = await self.settle_auction_completely(auction.borrower)
            level_fn = self.log.info if result.success else self.log.error
            level_fn(
                f"Settlement of {short_address(auction.borrower)}: {result.reason}",
                extra={"context": {
                    "borrower": auction.borrower,
                    "success": result.success,
                    "completed": result.completed,
                    "iterations": result.iterations,
                }},
            )
            return result
        finally:
            self._in_progress.discard(key)

    async def handle_settlements(self) -> list[SettlementResult]:
        """Proactive sweep over every settleable auction of the pool."""
        auctions = await self.find_settleable_auctions()
        results = []
        for auction in auctions:
            result = await self.process_auction(auction)
            if result is not None:
                results.append(result)
            await self.sleep(self.delay_between_actions)
        return results

    async def try_reactive_settlement(self) -> bool:
        """
        Settle the first settleable auction, then report whether the
        keeper's locked bond is now zero.
        """
        if not self.settings.enabled:
            return False

        auctions = await self.find_settleable_auctions()
        if not auctions:
            self.log.debug("No auctions need settlement, bond locked for other reasons")
            return False

        self.log.info("Bond locked, attempting reactive settlement")
        await self.process_auction(auctions[0])

        try:
            info = await self.pool.get_kicker_info(self.signer_address)
        except KeeperError as e:
            self.log.warning(f"Could not read kicker bond after settlement: {e.message}")
            return False

        unlocked = info.locked == 0
        if unlocked:
            self.log.info("Reactive settlement unlocked the bond")
        else:
            self.log.warning("Reactive settlement finished but the bond is still locked")
        return unlocked
