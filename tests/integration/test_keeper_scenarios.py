# PATH: tests/integration/test_keeper_scenarios.py
"""
End-to-end keeper scenarios.

The real decision, settlement, dispatch and nonce code runs against an
in-memory pool, wallet and indexer (tests/fakes.py).
"""

from decimal import Decimal

import pytest

from chains.erc20 import TokenDecimalsCache
from chains.nonce import NonceSequencer
from config.schema import (
    KeeperConfig,
    KickSettings,
    PoolConfig,
    PriceOrigin,
    SettlementSettings,
    TakeSettings,
)
from core.constants import PriceSource
from core.models import Bucket, KickerInfo, LiquidationAuction, Loan, PoolPrices
from dex.aggregator import QuoteAggregator
from execution.dispatcher import ExecutionDispatcher
from strategy.auction_price import AuctionPriceModel
from strategy.bonds import BondCollector
from strategy.decision import DecisionEngine
from strategy.keeper import Keeper
from strategy.price_feed import PriceFeed
from strategy.settlement import SettlementEngine

from fakes import (
    BORROWER,
    KEEPER_ADDRESS,
    POOL_ADDRESS,
    FakeIndexer,
    no_sleep,
)

ONE_DAY = 86_400


def make_dispatcher(wallet) -> ExecutionDispatcher:
    sequencer = NonceSequencer(lambda _signer: wallet.transaction_count())
    return ExecutionDispatcher(wallet=wallet, sequencer=sequencer)


def make_keeper(pool_config, pool, wallet, indexer, clock) -> Keeper:
    config = KeeperConfig(
        eth_rpc_url="http://localhost:8545",
        subgraph_url="http://localhost:8000",
        keeper_keystore="keystore.json",
        chain_id=1,
        pool_info_utils="0x" + "99" * 20,
        pools=(pool_config,),
        delay_between_actions=0,
        delay_between_runs=0,
    )
    decision = DecisionEngine(
        indexer=indexer,
        aggregator=QuoteAggregator(),
        venues={},
        decimals_cache=TokenDecimalsCache(provider=None),
        price_model=AuctionPriceModel(clock),
    )
    return Keeper(
        config=config,
        pools={POOL_ADDRESS: pool},
        indexer=indexer,
        decision=decision,
        price_feed=PriceFeed(),
        dispatcher=make_dispatcher(wallet),
        signer_address=wallet.address,
        sleep=no_sleep,
        clock=clock,
    )


@pytest.mark.integration
class TestKickThenArbTake:
    """Under-collateralized loan is kicked, then arbTaken once the price decays."""

    def setup_pool(self, pool):
        pool.add_loan(Loan(
            borrower=BORROWER,
            threshold_price=Decimal("0.0669"),
            neutral_price=Decimal("0.08"),
            debt=Decimal("0.9"),
            collateral=Decimal("14"),
        ))
        pool.prices = PoolPrices(
            hpb=Decimal("0.1"), hpb_index=3000, htp=Decimal("0.0669"),
            lup=Decimal("0.05"), lup_index=3100,
        )
        pool.add_bucket(Bucket(index=3000, price=Decimal("0.1"), quote_tokens=Decimal("0.00005")))

    def pool_config(self) -> PoolConfig:
        return PoolConfig(
            name="TEST / POOL",
            address=POOL_ADDRESS,
            price=PriceOrigin(source=PriceSource.FIXED, value=Decimal("0.07")),
            kick=KickSettings(min_debt=Decimal("0.07"), price_factor=Decimal("1")),
            take=TakeSettings(min_collateral=Decimal("0.000001"), hpb_price_factor=Decimal("0.9")),
        )

    @pytest.mark.asyncio
    async def test_kick_then_arb_take_drains_bucket(self, pool, wallet, clock):
        self.setup_pool(pool)
        indexer = FakeIndexer(pool, lup=Decimal("0.05"))
        keeper = make_keeper(self.pool_config(), pool, wallet, indexer, clock)

        first = await keeper.run_once()
        assert first[0].kicks == 1
        assert first[0].arb_takes == 0
        assert pool.auctions[BORROWER.lower()].kicker == KEEPER_ADDRESS

        clock.advance(ONE_DAY)
        second = await keeper.run_once()

        assert second[0].kicks == 0
        assert second[0].arb_takes == 1
        assert pool.buckets[3000].quote_tokens < Decimal("1e-7")
        assert [tx.method for tx in pool.sent] == ["kick", "bucketTake"]
        assert wallet.sent_nonces == [0, 1]

    @pytest.mark.asyncio
    async def test_fresh_auction_is_not_arb_taken(self, pool, wallet, clock):
        """At kick time the auction opens far above every bucket."""
        self.setup_pool(pool)
        indexer = FakeIndexer(pool, lup=Decimal("0.05"))
        keeper = make_keeper(self.pool_config(), pool, wallet, indexer, clock)

        await keeper.run_once()
        clock.advance(60)
        summary = await keeper.run_once()

        assert summary[0].arb_takes == 0
        assert pool.buckets[3000].quote_tokens == Decimal("0.00005")

    @pytest.mark.asyncio
    async def test_healthy_loan_is_not_kicked(self, pool, wallet, clock):
        self.setup_pool(pool)
        indexer = FakeIndexer(pool, lup=Decimal("0.5"))
        keeper = make_keeper(self.pool_config(), pool, wallet, indexer, clock)

        summary = await keeper.run_once()

        assert summary[0].kicks == 0
        assert pool.sent == []


@pytest.mark.integration
class TestReactiveSettlement:
    """Bad-debt auction kicked by the keeper is settled to unlock its bond."""

    def setup_pool(self, pool, clock):
        pool.add_auction(LiquidationAuction(
            borrower=BORROWER,
            kick_time=clock.now - 7200,
            reference_price=Decimal("1"),
            collateral=Decimal("0"),
            debt=Decimal("2.0"),
            kicker=KEEPER_ADDRESS,
        ))
        pool.kickers[KEEPER_ADDRESS.lower()] = KickerInfo(
            claimable=Decimal("0"), locked=Decimal("0.3")
        )

    @pytest.mark.asyncio
    async def test_reactive_settlement_unlocks_bond(self, pool, wallet, clock):
        self.setup_pool(pool, clock)
        pool.settle_debt_per_call = Decimal("0.5")
        engine = SettlementEngine(
            pool=pool,
            settings=SettlementSettings(enabled=True, min_auction_age=3600),
            indexer=FakeIndexer(pool),
            dispatcher=make_dispatcher(wallet),
            signer_address=KEEPER_ADDRESS,
            clock=clock,
            sleep=no_sleep,
        )

        assert await engine.try_reactive_settlement() is True

        info = await pool.get_kicker_info(KEEPER_ADDRESS)
        assert info.locked == 0
        assert info.claimable == Decimal("0.3")
        assert [tx.method for tx in pool.sent] == ["settle"] * 4

    @pytest.mark.asyncio
    async def test_bond_collector_withdraws_after_reactive_settlement(self, pool, wallet, clock):
        self.setup_pool(pool, clock)
        config = PoolConfig(
            name="TEST / POOL",
            address=POOL_ADDRESS,
            price=PriceOrigin(source=PriceSource.FIXED, value=Decimal("1")),
            settlement=SettlementSettings(enabled=True, min_auction_age=3600),
            collect_bond=True,
        )
        dispatcher = make_dispatcher(wallet)
        engine = SettlementEngine(
            pool=pool,
            settings=config.settlement,
            indexer=FakeIndexer(pool),
            dispatcher=dispatcher,
            signer_address=KEEPER_ADDRESS,
            clock=clock,
            sleep=no_sleep,
        )
        collector = BondCollector(pool, config, dispatcher, KEEPER_ADDRESS, settlement=engine)

        result = await collector.collect()

        assert result is not None and result.success
        assert [tx.method for tx in pool.sent] == ["settle", "withdrawBonds"]
        info = await pool.get_kicker_info(KEEPER_ADDRESS)
        assert info.claimable == 0
        assert info.locked == 0

    @pytest.mark.asyncio
    async def test_young_auction_keeps_bond_locked(self, pool, wallet, clock):
        self.setup_pool(pool, clock)
        pool.auctions[BORROWER.lower()].kick_time = clock.now - 60
        engine = SettlementEngine(
            pool=pool,
            settings=SettlementSettings(enabled=True, min_auction_age=3600),
            indexer=FakeIndexer(pool),
            dispatcher=make_dispatcher(wallet),
            signer_address=KEEPER_ADDRESS,
            clock=clock,
            sleep=no_sleep,
        )

        assert await engine.try_reactive_settlement() is False
        assert pool.sent == []

    @pytest.mark.asyncio
    async def test_sweep_settles_and_withdraws(self, pool, wallet, clock):
        self.setup_pool(pool, clock)
        config = PoolConfig(
            name="TEST / POOL",
            address=POOL_ADDRESS,
            price=PriceOrigin(source=PriceSource.FIXED, value=Decimal("1")),
            settlement=SettlementSettings(enabled=True, min_auction_age=3600),
            collect_bond=True,
        )
        keeper = make_keeper(config, pool, wallet, FakeIndexer(pool), clock)

        summary = await keeper.run_once()

        assert summary[0].settlements == 1
        assert summary[0].bonds_withdrawn == 1
        assert summary[0].errors == []
        assert [tx.method for tx in pool.sent] == ["settle", "withdrawBonds"]
