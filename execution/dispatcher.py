"""
execution/dispatcher.py - Action execution.

Wraps a decided action with:
- dry-run short-circuit (log only)
- pre-flight eth_call simulation and gas estimation
- gas limit padding and a fixed gas price multiplier
- submission under a NonceSequencer lease
- confirmation wait outside the lease

A failed dispatch is never retried here. The result is returned to the
sweep loop, which moves on to the next candidate.
"""

import itertools
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from chains.nonce import NonceSequencer
from core.constants import (
    ActionType,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_GAS_LIMIT_PADDING_PCT,
    DEFAULT_GAS_PRICE_MULTIPLIER,
    ErrorCode,
)
from core.exceptions import KeeperError, SimulationRevertError
from core.logging import get_logger, log_action
from core.math import pad_gas, short_address
from core.models import TxReceipt, TxRequest
from execution.state_machine import ActionState, ActionStateMachine
from protocol.pool import LendingPool

logger = get_logger(__name__)

_action_ids = itertools.count(1)


class Signer(Protocol):
    """What the dispatcher needs from a wallet."""

    @property
    def address(self) -> str: ...

    async def transaction_count(self) -> int: ...

    async def call(self, tx: TxRequest) -> str: ...

    async def estimate_gas(self, tx: TxRequest) -> int: ...

    async def gas_price(self) -> int: ...

    async def send(self, tx: TxRequest, nonce: int, gas_limit: int, gas_price: int) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt: ...


@dataclass
class DispatchResult:
    """Outcome of one dispatch."""
    action_type: ActionType
    pool: str
    borrower: str
    state: ActionState
    tx_hash: Optional[str] = None
    receipt: Optional[TxReceipt] = None
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @property
    def success(self) -> bool:
        return self.state in (ActionState.CONFIRMED, ActionState.DRY_RUN)

    @property
    def is_dry_run(self) -> bool:
        return self.state == ActionState.DRY_RUN

    @property
    def simulation_failed(self) -> bool:
        return self.state == ActionState.SIM_FAILED


class ExecutionDispatcher:
    """
    Sends actions for one signer.

    Args:
        wallet: Signer used for simulation and submission
        sequencer: Nonce sequencer shared by every dispatch of the signer
        dry_run: Log actions instead of sending them
        gas_limit_padding_pct: Margin over the gas estimate
        gas_price_multiplier: Fixed multiplier over the node gas price
        confirmation_timeout: Seconds to wait for a receipt
    """

    def __init__(
        self,
        wallet: Signer,
        sequencer: NonceSequencer,
        dry_run: bool = False,
        gas_limit_padding_pct: int = DEFAULT_GAS_LIMIT_PADDING_PCT,
        gas_price_multiplier: Decimal = DEFAULT_GAS_PRICE_MULTIPLIER,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ):
        self.wallet = wallet
        self.sequencer = sequencer
        self.dry_run = dry_run
        self.gas_limit_padding_pct = gas_limit_padding_pct
        self.gas_price_multiplier = gas_price_multiplier
        self.confirmation_timeout = confirmation_timeout

    async def dispatch(self, pool: LendingPool, action) -> DispatchResult:
        action_type: ActionType = action.action_type
        borrower = getattr(action, "borrower", "") or ""
        machine = ActionStateMachine(
            action_id=f"{action_type.value}-{short_address(pool.address)}-{next(_action_ids)}",
            metadata={"pool": pool.address, "borrower": borrower},
        )

        def result(**kwargs) -> DispatchResult:
            return DispatchResult(
                action_type=action_type,
                pool=pool.name,
                borrower=borrower,
                state=machine.state,
                **kwargs,
            )

        def outcome(status: str, level: int = logging.INFO, **extra) -> None:
            log_action(
                logger,
                action_type.value,
                status,
                pool.name,
                borrower=borrower or None,
                level=level,
                **extra,
            )

        try:
            tx = pool.build(action)
        except KeeperError as e:
            machine.fail(e.message)
            outcome("BUILD_FAILED", level=logging.ERROR, error=str(e))
            return result(error=e.message, error_code=e.code)

        if self.dry_run:
            machine.transition_to(ActionState.DRY_RUN, reason="dry run")
            outcome("DRY_RUN", method=tx.method, args=[str(a) for a in tx.args])
            return result()

        # Pre-flight
        machine.transition_to(ActionState.SIMULATING)
        try:
            await self.wallet.call(tx)
            if tx.gas_limit:
                gas_limit = tx.gas_limit
            else:
                gas_limit = pad_gas(await self.wallet.estimate_gas(tx), self.gas_limit_padding_pct)
            gas_price = int(Decimal(await self.wallet.gas_price()) * self.gas_price_multiplier)
        except SimulationRevertError as e:
            machine.transition_to(ActionState.SIM_FAILED, reason=e.message)
            outcome("SIM_FAILED", level=logging.WARNING, error=e.message)
            return result(error=e.message, error_code=e.code)
        except KeeperError as e:
            machine.fail(e.message)
            outcome("FAILED", level=logging.ERROR, error=str(e))
            return result(error=e.message, error_code=e.code)
        machine.transition_to(ActionState.SIM_PASSED)

        # Submit under a nonce lease
        machine.transition_to(ActionState.SUBMITTING)

        async def submit(nonce: int) -> str:
            return await self.wallet.send(tx, nonce, gas_limit, gas_price)

        try:
            tx_hash = await self.sequencer.run(self.wallet.address, submit)
        except KeeperError as e:
            machine.fail(e.message)
            outcome("SUBMIT_FAILED", level=logging.ERROR, error=str(e))
            return result(
                gas_limit=gas_limit,
                gas_price=gas_price,
                error=e.message,
                error_code=ErrorCode.EXECUTION_SUBMIT_FAILED,
            )
        machine.transition_to(ActionState.SUBMITTED, metadata={"tx_hash": tx_hash})

        # Confirm outside the lease
        machine.transition_to(ActionState.CONFIRMING)
        try:
            receipt = await self.wallet.wait_for_receipt(tx_hash, self.confirmation_timeout)
        except KeeperError as e:
            self.sequencer.reset(self.wallet.address)
            machine.fail(e.message)
            outcome("NOT_CONFIRMED", level=logging.ERROR, tx_hash=tx_hash, error=str(e))
            return result(
                tx_hash=tx_hash,
                gas_limit=gas_limit,
                gas_price=gas_price,
                error=e.message,
                error_code=e.code,
            )

        if not receipt.succeeded:
            self.sequencer.reset(self.wallet.address)
            machine.fail("reverted")
            outcome("REVERTED", level=logging.ERROR, tx_hash=tx_hash, gas_used=receipt.gas_used)
            return result(
                tx_hash=tx_hash,
                receipt=receipt,
                gas_limit=gas_limit,
                gas_price=gas_price,
                error="transaction reverted",
                error_code=ErrorCode.EXECUTION_REVERTED,
            )

        machine.transition_to(ActionState.CONFIRMED)
        outcome(
            "CONFIRMED",
            tx_hash=tx_hash,
            gas_used=receipt.gas_used,
            gas_limit=gas_limit,
            block=receipt.block_number,
        )
        return result(
            tx_hash=tx_hash,
            receipt=receipt,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )
