"""
strategy/keeper.py - Sweep loop.

One sweep handles every configured pool concurrently. Per pool:

    feed price -> kicks -> takes / arbTakes -> settlements -> bonds -> LP rewards

Each dispatched action is followed by delay_between_actions. A failing stage
is logged and the pool's later stages still run; a failure in one pool never
stops the other pools or the next sweep.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Mapping, Optional

from config.schema import KeeperConfig, PoolConfig
from core.exceptions import KeeperError
from core.logging import get_logger
from core.math import short_address
from core.models import ArbTake
from core.time import now_seconds
from discovery.subgraph import SubgraphClient
from execution.dispatcher import DispatchResult, ExecutionDispatcher
from protocol.pool import LendingPool
from strategy.bonds import BondCollector
from strategy.decision import DecisionEngine, TakeDecision
from strategy.lp_rewards import LpRewardCollector
from strategy.price_feed import PriceFeed
from strategy.settlement import SettlementEngine

logger = get_logger(__name__)


@dataclass
class PoolSweep:
    """What one sweep did for one pool."""
    pool: str
    feed_price: Optional[Decimal] = None
    kicks: int = 0
    takes: int = 0
    arb_takes: int = 0
    settlements: int = 0
    bonds_withdrawn: int = 0
    lp_redeemed: int = 0
    failed_actions: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "pool": self.pool,
            "feed_price": str(self.feed_price) if self.feed_price is not None else None,
            "kicks": self.kicks,
            "takes": self.takes,
            "arb_takes": self.arb_takes,
            "settlements": self.settlements,
            "bonds_withdrawn": self.bonds_withdrawn,
            "lp_redeemed": self.lp_redeemed,
            "failed_actions": self.failed_actions,
            "errors": self.errors,
        }


@dataclass
class PoolRuntime:
    """A configured pool with its per-pool engines."""
    config: PoolConfig
    pool: LendingPool
    settlement: SettlementEngine
    bonds: BondCollector
    lp_rewards: Optional[LpRewardCollector] = None


class Keeper:
    """
    Runs sweeps over all pools for one signer.

    Args:
        config: Validated keeper configuration
        pools: Pool clients by configured address
        indexer: Subgraph client
        decision: Kick and take decision engine
        price_feed: Feed price resolver
        dispatcher: Action dispatcher of the signer
        signer_address: Keeper address
    """

    def __init__(
        self,
        config: KeeperConfig,
        pools: Mapping[str, LendingPool],
        indexer: SubgraphClient,
        decision: DecisionEngine,
        price_feed: PriceFeed,
        dispatcher: ExecutionDispatcher,
        signer_address: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = now_seconds,
    ):
        self.config = config
        self.decision = decision
        self.price_feed = price_feed
        self.dispatcher = dispatcher
        self.signer_address = signer_address
        self.sleep = sleep
        self._stop = asyncio.Event()
        self._warned_external_disabled = False

        self.runtimes: list[PoolRuntime] = []
        for pool_config in config.pools:
            pool = pools[pool_config.address]
            settlement = SettlementEngine(
                pool=pool,
                settings=pool_config.settlement,
                indexer=indexer,
                dispatcher=dispatcher,
                signer_address=signer_address,
                dry_run=config.dry_run,
                delay_between_actions=config.delay_between_actions,
                clock=clock,
                sleep=sleep,
            )
            bonds = BondCollector(
                pool=pool,
                pool_config=pool_config,
                dispatcher=dispatcher,
                signer_address=signer_address,
                settlement=settlement,
            )
            lp_rewards = None
            if pool_config.collect_lp_reward is not None:
                lp_rewards = LpRewardCollector(
                    pool=pool,
                    pool_name=pool_config.name,
                    settings=pool_config.collect_lp_reward,
                    dispatcher=dispatcher,
                    signer_address=signer_address,
                    delay_between_actions=config.delay_between_actions,
                    sleep=sleep,
                )
            self.runtimes.append(PoolRuntime(pool_config, pool, settlement, bonds, lp_rewards))

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def run_forever(self) -> None:
        sweep = 0
        while not self.stopped:
            sweep += 1
            summaries = await self.run_once()
            logger.info(
                f"Sweep {sweep} complete",
                extra={"context": {"sweep": sweep, "pools": [s.to_dict() for s in summaries]}},
            )
            if self.stopped:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.delay_between_runs)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> list[PoolSweep]:
        """One sweep over every pool, concurrently."""
        self._warn_external_disabled()
        results = await asyncio.gather(
            *(self._sweep_pool_safely(rt) for rt in self.runtimes)
        )
        return list(results)

    def _warn_external_disabled(self) -> None:
        if self._warned_external_disabled:
            return
        self._warned_external_disabled = True
        if not self.config.external_takes_enabled:
            logger.info("External takes disabled: no taker address or no pool lists venues")

    async def _sweep_pool_safely(self, runtime: PoolRuntime) -> PoolSweep:
        summary = PoolSweep(pool=runtime.config.name)
        try:
            await self.sweep_pool(runtime, summary)
        except Exception as e:
            summary.errors.append(str(e))
            logger.error(
                f"Sweep of pool {runtime.config.name} failed: {e}",
                extra={"context": {"pool": runtime.config.name}},
                exc_info=not isinstance(e, KeeperError),
            )
        return summary

    async def _run_stage(
        self,
        stage: str,
        runtime: PoolRuntime,
        summary: PoolSweep,
        work: Awaitable[None],
    ) -> None:
        """Run one stage of a pool sweep; a failure is recorded and the next stage still runs."""
        try:
            await work
        except Exception as e:
            message = e.message if isinstance(e, KeeperError) else str(e)
            summary.errors.append(f"{stage}: {message}")
            logger.error(
                f"{stage.capitalize()} of pool {runtime.config.name} failed: {message}",
                extra={"context": {"pool": runtime.config.name, "stage": stage}},
                exc_info=not isinstance(e, KeeperError),
            )

    # -------------------------------------------------------------------------
    # Per-pool stages
    # -------------------------------------------------------------------------

    async def sweep_pool(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        cfg = runtime.config

        if cfg.kick is not None:
            try:
                summary.feed_price = await self.price_feed.get_price(runtime.pool, cfg.price)
            except KeeperError as e:
                summary.errors.append(f"price feed: {e.message}")
                logger.warning(
                    f"No feed price for {cfg.name}, skipping kicks: {e.message}",
                    extra={"context": {"pool": cfg.name, "error_code": e.code.value}},
                )
            if summary.feed_price is not None:
                await self._run_stage("kicks", runtime, summary, self._handle_kicks(runtime, summary))

        if cfg.take is not None:
            await self._run_stage("takes", runtime, summary, self._handle_takes(runtime, summary))

        if cfg.settlement.enabled:
            await self._run_stage("settlements", runtime, summary, self._handle_settlements(runtime, summary))

        if cfg.collect_bond:
            await self._run_stage("bonds", runtime, summary, self._handle_bonds(runtime, summary))

        if runtime.lp_rewards is not None:
            await self._run_stage("lp rewards", runtime, summary, self._handle_lp_rewards(runtime, summary))

    async def _handle_kicks(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        async for kick in self.decision.kick_candidates(runtime.pool, runtime.config, summary.feed_price):
            if self.stopped:
                return
            result = await self.dispatcher.dispatch(runtime.pool, kick)
            self._record(result, summary, "kicks")
            await self.sleep(self.config.delay_between_actions)

    async def _handle_takes(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        async for decision in self.decision.take_candidates(runtime.pool, runtime.config):
            if self.stopped:
                return
            await self._execute_take_decision(runtime, decision, summary)

    async def _handle_settlements(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        results = await runtime.settlement.handle_settlements()
        summary.settlements += sum(1 for r in results if r.success)

    async def _handle_bonds(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        result = await runtime.bonds.collect()
        if result is not None:
            self._record(result, summary, "bonds_withdrawn")
            await self.sleep(self.config.delay_between_actions)

    async def _handle_lp_rewards(self, runtime: PoolRuntime, summary: PoolSweep) -> None:
        for result in await runtime.lp_rewards.collect():
            self._record(result, summary, "lp_redeemed")

    async def _execute_take_decision(
        self,
        runtime: PoolRuntime,
        decision: TakeDecision,
        summary: PoolSweep,
    ) -> None:
        """External take first, then arbTake whatever collateral is left."""
        borrower = decision.auction.borrower
        context = {"pool": runtime.config.name, "borrower": borrower}

        if decision.take is not None:
            result = await self.dispatcher.dispatch(runtime.pool, decision.take)
            self._record(result, summary, "takes")
            await self.sleep(self.config.delay_between_actions)

            if decision.arb_take is not None and result.success:
                try:
                    auction = await runtime.pool.get_auction(borrower)
                except KeeperError as e:
                    summary.errors.append(f"auction {short_address(borrower)}: {e.message}")
                    logger.warning(
                        f"Cannot re-read auction {short_address(borrower)} after take, skipping arbTake: {e.message}",
                        extra={"context": {**context, "error_code": e.code.value}},
                    )
                    return
                if not auction.is_active or auction.collateral <= 0:
                    logger.debug(
                        f"Auction {short_address(borrower)} fully taken, skipping arbTake",
                        extra={"context": context},
                    )
                    return

        if decision.arb_take is not None:
            await self._execute_arb_take(runtime, decision.arb_take, summary)

    async def _execute_arb_take(self, runtime: PoolRuntime, arb_take: ArbTake, summary: PoolSweep) -> None:
        tracker = runtime.lp_rewards
        lp_before = await tracker.snapshot(arb_take.bucket_index) if tracker is not None else None

        result = await self.dispatcher.dispatch(runtime.pool, arb_take)
        self._record(result, summary, "arb_takes")
        if result.success and not result.is_dry_run and lp_before is not None:
            await tracker.record_arb_take(arb_take.bucket_index, lp_before)
        await self.sleep(self.config.delay_between_actions)

    @staticmethod
    def _record(result: DispatchResult, summary: PoolSweep, counter: str) -> None:
        if result.success:
            setattr(summary, counter, getattr(summary, counter) + 1)
        else:
            summary.failed_actions += 1
