# PATH: tests/unit/test_lp_rewards.py
"""
Unit tests for arbTake LP reward tracking and redemption.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from chains.nonce import NonceSequencer
from config.schema import LpRewardSettings
from core.constants import RedeemAs
from core.exceptions import RPCError
from core.models import Bucket
from execution.dispatcher import ExecutionDispatcher
from strategy.lp_rewards import LpRewardCollector

from fakes import KEEPER_ADDRESS, no_sleep

INDEX = 4000
OTHER_INDEX = 4001


def make_collector(pool, wallet, redeem_as=RedeemAs.QUOTE, min_amount="0", dry_run=False, sleep=no_sleep):
    return LpRewardCollector(
        pool=pool,
        pool_name=pool.name,
        settings=LpRewardSettings(redeem_as=redeem_as, min_amount=Decimal(min_amount)),
        dispatcher=ExecutionDispatcher(
            wallet=wallet,
            sequencer=NonceSequencer(lambda _s: wallet.transaction_count()),
            dry_run=dry_run,
        ),
        signer_address=KEEPER_ADDRESS,
        delay_between_actions=1,
        sleep=sleep,
    )


def add_bucket(pool, index=INDEX, quote="10", collateral="0", price="2", lender_lp="0"):
    pool.add_bucket(Bucket(
        index=index,
        price=Decimal(price),
        quote_tokens=Decimal(quote),
        collateral=Decimal(collateral),
    ))
    pool.lenders[(index, KEEPER_ADDRESS.lower())] = Decimal(lender_lp)


class TestTracking:
    @pytest.mark.asyncio
    async def test_records_lp_gained_by_arb_take(self, pool, wallet):
        add_bucket(pool, lender_lp="1")
        collector = make_collector(pool, wallet)

        before = await collector.snapshot(INDEX)
        pool.lenders[(INDEX, KEEPER_ADDRESS.lower())] = Decimal("1.2")
        awarded = await collector.record_arb_take(INDEX, before)

        assert awarded == Decimal("0.2")
        assert collector.rewards == {INDEX: Decimal("0.2")}

    @pytest.mark.asyncio
    async def test_rewards_accumulate_per_bucket(self, pool, wallet):
        add_bucket(pool, lender_lp="0.3")
        collector = make_collector(pool, wallet)
        collector.add_reward(INDEX, Decimal("0.1"))

        await collector.record_arb_take(INDEX, Decimal("0.1"))

        assert collector.rewards == {INDEX: Decimal("0.3")}

    @pytest.mark.asyncio
    async def test_lp_decrease_is_not_a_reward(self, pool, wallet):
        add_bucket(pool, lender_lp="0.5")
        collector = make_collector(pool, wallet)

        assert await collector.record_arb_take(INDEX, Decimal("1")) == Decimal("0")
        assert collector.rewards == {}

    @pytest.mark.asyncio
    async def test_unreadable_lp_records_nothing(self, pool, wallet):
        add_bucket(pool)
        pool.get_lender_lp = AsyncMock(side_effect=RPCError("lenderInfo failed"))
        collector = make_collector(pool, wallet)

        assert await collector.snapshot(INDEX) is None
        assert await collector.record_arb_take(INDEX, Decimal("0")) == Decimal("0")
        assert collector.rewards == {}


class TestRedemption:
    @pytest.mark.asyncio
    async def test_redeems_only_the_reward_as_quote(self, pool, wallet):
        add_bucket(pool, lender_lp="3")
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        collector = make_collector(pool, wallet, sleep=sleep)
        collector.add_reward(INDEX, Decimal("0.5"))

        results = await collector.collect()

        assert [r.success for r in results] == [True]
        assert [(tx.method, tx.args) for tx in pool.sent] == [("removeQuoteToken", (Decimal("0.5"), INDEX))]
        assert pool.lenders[(INDEX, KEEPER_ADDRESS.lower())] == Decimal("2.5")
        assert collector.rewards == {}
        assert sleeps == [1]

    @pytest.mark.asyncio
    async def test_collateral_amount_uses_bucket_price(self, pool, wallet):
        add_bucket(pool, quote="0", collateral="5", price="2", lender_lp="1")
        collector = make_collector(pool, wallet, redeem_as=RedeemAs.COLLATERAL)
        collector.add_reward(INDEX, Decimal("1"))

        await collector.collect()

        assert [(tx.method, tx.args) for tx in pool.sent] == [("removeCollateral", (Decimal("0.5"), INDEX))]
        assert collector.rewards == {}

    @pytest.mark.asyncio
    async def test_falls_back_to_collateral_when_quote_empty(self, pool, wallet):
        add_bucket(pool, quote="0", collateral="5", lender_lp="1")
        collector = make_collector(pool, wallet, redeem_as=RedeemAs.QUOTE_THEN_COLLATERAL)
        collector.add_reward(INDEX, Decimal("1"))

        await collector.collect()

        assert [tx.method for tx in pool.sent] == ["removeCollateral"]
        assert collector.rewards == {}

    @pytest.mark.asyncio
    async def test_drains_quote_then_redeems_rest_as_collateral(self, pool, wallet):
        add_bucket(pool, quote="0.3", collateral="5", price="2", lender_lp="1")
        collector = make_collector(pool, wallet, redeem_as=RedeemAs.QUOTE_THEN_COLLATERAL)
        collector.add_reward(INDEX, Decimal("1"))

        await collector.collect()

        assert [(tx.method, tx.args) for tx in pool.sent] == [
            ("removeQuoteToken", (Decimal("0.3"), INDEX)),
            ("removeCollateral", (Decimal("0.35"), INDEX)),
        ]
        assert collector.rewards == {}

    @pytest.mark.asyncio
    async def test_single_token_mode_does_not_fall_back(self, pool, wallet):
        add_bucket(pool, quote="10", collateral="0", lender_lp="1")
        collector = make_collector(pool, wallet, redeem_as=RedeemAs.COLLATERAL)
        collector.add_reward(INDEX, Decimal("1"))

        assert await collector.collect() == []
        assert pool.sent == []
        assert collector.rewards == {INDEX: Decimal("1")}

    @pytest.mark.asyncio
    async def test_amount_below_minimum_is_kept(self, pool, wallet):
        add_bucket(pool, lender_lp="1")
        collector = make_collector(pool, wallet, min_amount="0.001")
        collector.add_reward(INDEX, Decimal("0.0005"))

        await collector.collect()

        assert pool.sent == []
        assert collector.rewards == {INDEX: Decimal("0.0005")}

    @pytest.mark.asyncio
    async def test_reward_dropped_when_lender_has_no_lp(self, pool, wallet):
        add_bucket(pool, lender_lp="0")
        collector = make_collector(pool, wallet)
        collector.add_reward(INDEX, Decimal("0.5"))

        await collector.collect()

        assert pool.sent == []
        assert collector.rewards == {}

    @pytest.mark.asyncio
    async def test_dry_run_keeps_reward(self, pool, wallet):
        add_bucket(pool, lender_lp="1")
        collector = make_collector(pool, wallet, dry_run=True)
        collector.add_reward(INDEX, Decimal("0.5"))

        results = await collector.collect()

        assert [r.is_dry_run for r in results] == [True]
        assert pool.sent == []
        assert collector.rewards == {INDEX: Decimal("0.5")}

    @pytest.mark.asyncio
    async def test_reverted_redemption_keeps_reward(self, pool, wallet):
        add_bucket(pool, lender_lp="1")
        wallet.revert_methods.add("removeQuoteToken")
        collector = make_collector(pool, wallet)
        collector.add_reward(INDEX, Decimal("0.5"))

        results = await collector.collect()

        assert [r.success for r in results] == [False]
        assert collector.rewards == {INDEX: Decimal("0.5")}

    @pytest.mark.asyncio
    async def test_failing_bucket_does_not_stop_others(self, pool, wallet):
        add_bucket(pool, index=INDEX, lender_lp="1")
        add_bucket(pool, index=OTHER_INDEX, lender_lp="1")
        read_bucket = pool.get_bucket_by_index

        async def get_bucket_by_index(index):
            if index == INDEX:
                raise RPCError("bucketInfo failed")
            return await read_bucket(index)

        pool.get_bucket_by_index = get_bucket_by_index
        collector = make_collector(pool, wallet)
        collector.add_reward(INDEX, Decimal("0.5"))
        collector.add_reward(OTHER_INDEX, Decimal("0.5"))

        await collector.collect()

        assert [(tx.method, tx.args[1]) for tx in pool.sent] == [("removeQuoteToken", OTHER_INDEX)]
        assert collector.rewards == {INDEX: Decimal("0.5")}
