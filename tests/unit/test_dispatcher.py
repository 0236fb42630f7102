# PATH: tests/unit/test_dispatcher.py
"""
Unit tests for ExecutionDispatcher against the in-memory wallet and pool.
"""

from dataclasses import dataclass
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from chains.nonce import NonceSequencer
from core.constants import ActionType, ErrorCode
from core.exceptions import ExecutionError
from core.models import Kick, KickerInfo, LiquidationAuction, Loan, Settle, WithdrawBonds
from execution.dispatcher import ExecutionDispatcher
from execution.state_machine import ActionState

from fakes import BORROWER, POOL_ADDRESS


def make_dispatcher(wallet, **kwargs) -> ExecutionDispatcher:
    return ExecutionDispatcher(
        wallet=wallet,
        sequencer=NonceSequencer(lambda _signer: wallet.transaction_count()),
        **kwargs,
    )


def kick() -> Kick:
    return Kick(pool_address=POOL_ADDRESS, borrower=BORROWER, limit_index=7388)


@pytest.fixture
def loan_pool(pool):
    pool.add_loan(Loan(
        borrower=BORROWER,
        threshold_price=Decimal("1.2"),
        neutral_price=Decimal("1.3"),
        debt=Decimal("10"),
        collateral=Decimal("8"),
    ))
    return pool


class TestDispatch:
    @pytest.mark.asyncio
    async def test_confirmed(self, loan_pool, wallet):
        dispatcher = make_dispatcher(wallet)

        result = await dispatcher.dispatch(loan_pool, kick())

        assert result.success
        assert result.state == ActionState.CONFIRMED
        assert result.action_type == ActionType.KICK
        assert result.borrower == BORROWER
        assert result.gas_limit == 110_000
        assert result.gas_price == 1_000_000_000
        assert [tx.method for tx in loan_pool.sent] == ["kick"]

    @pytest.mark.asyncio
    async def test_gas_price_multiplier(self, loan_pool, wallet):
        dispatcher = make_dispatcher(wallet, gas_price_multiplier=Decimal("1.5"))
        result = await dispatcher.dispatch(loan_pool, kick())
        assert result.gas_price == 1_500_000_000

    @pytest.mark.asyncio
    async def test_fixed_gas_limit_skips_padding(self, pool, wallet, clock):
        pool.add_auction(LiquidationAuction(
            borrower=BORROWER, kick_time=clock.now - 100_000, reference_price=Decimal("1"),
            collateral=Decimal("0"), debt=Decimal("1"),
        ))
        result = await make_dispatcher(wallet).dispatch(
            pool, Settle(pool_address=POOL_ADDRESS, borrower=BORROWER, max_depth=10)
        )
        assert result.success
        assert result.gas_limit == 800_000

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, loan_pool, wallet):
        dispatcher = make_dispatcher(wallet, dry_run=True)

        result = await dispatcher.dispatch(loan_pool, kick())

        assert result.success
        assert result.is_dry_run
        assert result.tx_hash is None
        assert loan_pool.sent == []
        assert wallet.sent_nonces == []

    @pytest.mark.asyncio
    async def test_simulation_revert_is_not_submitted(self, loan_pool, wallet):
        wallet.revert_methods.add("kick")
        dispatcher = make_dispatcher(wallet)

        result = await dispatcher.dispatch(loan_pool, kick())

        assert not result.success
        assert result.simulation_failed
        assert result.error_code == ErrorCode.SIMULATION_REVERT
        assert loan_pool.sent == []

    @pytest.mark.asyncio
    async def test_onchain_revert_resets_nonce(self, loan_pool, wallet):
        wallet.receipt_status = 0
        reads = []

        async def fetch(signer):
            reads.append(signer)
            return await wallet.transaction_count()

        dispatcher = ExecutionDispatcher(wallet=wallet, sequencer=NonceSequencer(fetch))

        result = await dispatcher.dispatch(loan_pool, kick())
        assert result.state == ActionState.FAILED
        assert result.error_code == ErrorCode.EXECUTION_REVERTED
        assert result.tx_hash is not None

        await dispatcher.dispatch(loan_pool, kick())
        assert len(reads) == 2

    @pytest.mark.asyncio
    async def test_submit_failure_is_reported(self, loan_pool, wallet):
        wallet.send = AsyncMock(side_effect=ExecutionError("nonce too low"))
        dispatcher = make_dispatcher(wallet)

        result = await dispatcher.dispatch(loan_pool, kick())

        assert result.state == ActionState.FAILED
        assert result.error_code == ErrorCode.EXECUTION_SUBMIT_FAILED
        assert dispatcher.sequencer.leases(wallet.address) == []

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, loan_pool, wallet):
        wallet.wait_for_receipt = AsyncMock(
            side_effect=ExecutionError("no receipt", code=ErrorCode.EXECUTION_TIMEOUT)
        )
        result = await make_dispatcher(wallet).dispatch(loan_pool, kick())

        assert result.state == ActionState.FAILED
        assert result.error_code == ErrorCode.EXECUTION_TIMEOUT

    @pytest.mark.asyncio
    async def test_unbuildable_action_fails(self, pool, wallet):
        @dataclass(frozen=True)
        class Unknown:
            pool_address: str = POOL_ADDRESS
            action_type: ActionType = ActionType.KICK

        result = await make_dispatcher(wallet).dispatch(pool, Unknown())

        assert result.state == ActionState.FAILED
        assert pool.sent == []

    @pytest.mark.asyncio
    async def test_sequential_dispatches_use_consecutive_nonces(self, pool, wallet):
        pool.kickers[wallet.address.lower()] = KickerInfo(Decimal("1"), Decimal("0"))
        dispatcher = make_dispatcher(wallet)
        action = WithdrawBonds(pool_address=POOL_ADDRESS, recipient=wallet.address, max_amount=1)

        for _ in range(3):
            assert (await dispatcher.dispatch(pool, action)).success

        assert wallet.sent_nonces == [0, 1, 2]
