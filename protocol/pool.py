"""
protocol/pool.py - Lending pool client.

LendingPool is the seam the strategy code depends on. AjnaPool implements
it over JSON-RPC: reads go through the PoolInfoUtils helper contract and the
pool itself, writes are returned as unsigned TxRequest objects for the
dispatcher.

Values read from chain are WAD integers and are returned as Decimal.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from chains import abi
from chains.providers import RPCProvider
from core.constants import (
    MAX_UINT_256,
    SETTLE_GAS_LIMIT,
    SETTLE_SIMULATION_BUCKET_DEPTH,
    WAD,
    ZERO_ADDRESS,
)
from core.exceptions import InvariantError, SimulationRevertError
from core.logging import get_logger
from core.math import decimal_to_wad, wad_to_decimal
from core.models import (
    ArbTake,
    Bucket,
    Kick,
    KickerInfo,
    LiquidationAuction,
    Loan,
    PoolPrices,
    RemoveCollateral,
    RemoveQuoteToken,
    Settle,
    Take,
    TxRequest,
    WithdrawBonds,
)

logger = get_logger(__name__)


class LendingPool(ABC):
    """Reads and transaction builders for one lending pool."""

    address: str
    name: str

    @abstractmethod
    async def get_loan(self, borrower: str) -> Loan:
        ...

    @abstractmethod
    async def get_auction(self, borrower: str) -> LiquidationAuction:
        """Live auction state; kick_time is 0 when no auction exists."""

    @abstractmethod
    async def get_kicker_info(self, kicker: str) -> KickerInfo:
        ...

    @abstractmethod
    async def get_prices(self) -> PoolPrices:
        ...

    @abstractmethod
    async def get_bucket_by_index(self, index: int) -> Bucket:
        ...

    @abstractmethod
    async def get_lender_lp(self, bucket_index: int, lender: str) -> Decimal:
        """LP balance of lender in a bucket."""

    @abstractmethod
    async def price_to_index(self, price: Decimal) -> int:
        ...

    @abstractmethod
    async def quote_token(self) -> str:
        ...

    @abstractmethod
    async def collateral_token(self) -> str:
        ...

    @abstractmethod
    async def simulate_settle(self, borrower: str, sender: str) -> bool:
        """True when a settle call from sender would not revert."""

    @abstractmethod
    def build_kick(self, action: Kick) -> TxRequest:
        ...

    @abstractmethod
    def build_bucket_take(self, action: ArbTake) -> TxRequest:
        ...

    @abstractmethod
    def build_take(self, action: Take) -> TxRequest:
        ...

    @abstractmethod
    def build_settle(self, action: Settle) -> TxRequest:
        ...

    @abstractmethod
    def build_withdraw_bonds(self, action: WithdrawBonds) -> TxRequest:
        ...

    @abstractmethod
    def build_remove_quote_token(self, action: RemoveQuoteToken) -> TxRequest:
        ...

    @abstractmethod
    def build_remove_collateral(self, action: RemoveCollateral) -> TxRequest:
        ...

    def build(self, action) -> TxRequest:
        """Dispatch to the builder of an action."""
        if isinstance(action, Kick):
            return self.build_kick(action)
        if isinstance(action, ArbTake):
            return self.build_bucket_take(action)
        if isinstance(action, Take):
            return self.build_take(action)
        if isinstance(action, Settle):
            return self.build_settle(action)
        if isinstance(action, WithdrawBonds):
            return self.build_withdraw_bonds(action)
        if isinstance(action, RemoveQuoteToken):
            return self.build_remove_quote_token(action)
        if isinstance(action, RemoveCollateral):
            return self.build_remove_collateral(action)
        raise InvariantError(f"No transaction builder for {type(action).__name__}")


class AjnaPool(LendingPool):
    """
    Ajna pool over JSON-RPC.

    Args:
        provider: RPC provider
        address: Pool address
        pool_info_utils: PoolInfoUtils helper contract address
        name: Human-readable pool name for logs
        taker_address: Taker contract for external takes (optional)
    """

    def __init__(
        self,
        provider: RPCProvider,
        address: str,
        pool_info_utils: str,
        name: str = "",
        taker_address: str | None = None,
    ):
        self.provider = provider
        self.address = abi.checksum(address)
        self.pool_info_utils = abi.checksum(pool_info_utils)
        self.name = name or self.address
        self.taker_address = abi.checksum(taker_address) if taker_address else None
        self._quote_token: str | None = None
        self._collateral_token: str | None = None

    async def _read(self, to: str, fn: abi.Function, *args) -> tuple:
        data = await self.provider.eth_call(to, fn.encode(*args))
        return fn.decode(data)

    async def _inflator(self) -> int:
        (_, _, _, pending_inflator, _) = await self._read(
            self.pool_info_utils, abi.INFO_POOL_LOANS, self.address
        )
        return pending_inflator

    async def get_loan(self, borrower: str) -> Loan:
        debt, collateral, t0_np, threshold_price = await self._read(
            self.pool_info_utils, abi.INFO_BORROWER, self.address, borrower
        )
        inflator = await self._inflator()
        kick_time = (await self._read(self.address, abi.POOL_AUCTION_INFO, borrower))[3]

        return Loan(
            borrower=borrower,
            threshold_price=wad_to_decimal(threshold_price),
            neutral_price=wad_to_decimal(t0_np * inflator // WAD),
            debt=wad_to_decimal(debt),
            collateral=wad_to_decimal(collateral),
            is_kicked=kick_time != 0,
        )

    async def get_auction(self, borrower: str) -> LiquidationAuction:
        status = await self._read(
            self.pool_info_utils, abi.INFO_AUCTION_STATUS, self.address, borrower
        )
        (kick_time, collateral, debt_to_cover, _, price, neutral_price,
         reference_price, _, _) = status
        info = await self._read(self.address, abi.POOL_AUCTION_INFO, borrower)
        kicker, bond_size = info[0], info[2]

        return LiquidationAuction(
            borrower=borrower,
            kick_time=kick_time,
            reference_price=wad_to_decimal(reference_price),
            collateral=wad_to_decimal(collateral),
            debt=wad_to_decimal(debt_to_cover),
            kicker="" if kicker == ZERO_ADDRESS else abi.checksum(kicker),
            price=wad_to_decimal(price),
            neutral_price=wad_to_decimal(neutral_price),
            bond_size=wad_to_decimal(bond_size),
        )

    async def get_kicker_info(self, kicker: str) -> KickerInfo:
        claimable, locked = await self._read(self.address, abi.POOL_KICKER_INFO, kicker)
        return KickerInfo(
            claimable=wad_to_decimal(claimable),
            locked=wad_to_decimal(locked),
        )

    async def get_prices(self) -> PoolPrices:
        hpb, hpb_index, htp, htp_index, lup, lup_index = await self._read(
            self.pool_info_utils, abi.INFO_POOL_PRICES, self.address
        )
        # LLB is reported as the price of the HTP bucket
        (llb,) = await self._read(self.pool_info_utils, abi.INFO_INDEX_TO_PRICE, htp_index)
        return PoolPrices(
            hpb=wad_to_decimal(hpb),
            hpb_index=hpb_index,
            htp=wad_to_decimal(htp),
            lup=wad_to_decimal(lup),
            lup_index=lup_index,
            llb=wad_to_decimal(llb),
        )

    async def get_bucket_by_index(self, index: int) -> Bucket:
        price, quote_tokens, collateral, bucket_lp, _, exchange_rate = await self._read(
            self.pool_info_utils, abi.INFO_BUCKET, self.address, index
        )
        return Bucket(
            index=index,
            price=wad_to_decimal(price),
            quote_tokens=wad_to_decimal(quote_tokens),
            collateral=wad_to_decimal(collateral),
            lp=wad_to_decimal(bucket_lp),
            exchange_rate=wad_to_decimal(exchange_rate),
        )

    async def get_lender_lp(self, bucket_index: int, lender: str) -> Decimal:
        lp_balance, _ = await self._read(self.address, abi.POOL_LENDER_INFO, bucket_index, lender)
        return wad_to_decimal(lp_balance)

    async def price_to_index(self, price: Decimal) -> int:
        (index,) = await self._read(
            self.pool_info_utils, abi.INFO_PRICE_TO_INDEX, decimal_to_wad(price)
        )
        return index

    async def quote_token(self) -> str:
        if self._quote_token is None:
            (self._quote_token,) = await self._read(self.address, abi.POOL_QUOTE_TOKEN)
        return self._quote_token

    async def collateral_token(self) -> str:
        if self._collateral_token is None:
            (self._collateral_token,) = await self._read(self.address, abi.POOL_COLLATERAL)
        return self._collateral_token

    async def simulate_settle(self, borrower: str, sender: str) -> bool:
        data = abi.POOL_SETTLE.encode(borrower, SETTLE_SIMULATION_BUCKET_DEPTH)
        try:
            await self.provider.eth_call(self.address, data, sender=sender)
        except SimulationRevertError as e:
            logger.debug(
                f"Settle simulation reverted for {borrower}",
                extra={"context": {"pool": self.name, "borrower": borrower, "error": e.message}},
            )
            return False
        return True

    def build_kick(self, action: Kick) -> TxRequest:
        args = (action.borrower, action.limit_index)
        return TxRequest(
            to=self.address,
            data=abi.POOL_KICK.encode(*args),
            method="kick",
            args=args,
        )

    def build_bucket_take(self, action: ArbTake) -> TxRequest:
        args = (action.borrower, action.deposit_take, action.bucket_index)
        return TxRequest(
            to=self.address,
            data=abi.POOL_BUCKET_TAKE.encode(*args),
            method="bucketTake",
            args=args,
        )

    def build_take(self, action: Take) -> TxRequest:
        if not self.taker_address:
            raise InvariantError(
                "External take requires a taker contract",
                details={"pool": self.address},
            )
        args = (
            self.address,
            action.borrower,
            decimal_to_wad(action.auction_price),
            decimal_to_wad(action.collateral),
            action.swap.source,
            abi.checksum(action.swap.router),
            bytes.fromhex(action.swap.data.removeprefix("0x")),
        )
        return TxRequest(
            to=self.taker_address,
            data=abi.TAKER_TAKE_WITH_SWAP.encode(*args),
            method="takeWithAtomicSwap",
            args=args,
        )

    def build_settle(self, action: Settle) -> TxRequest:
        args = (action.borrower, action.max_depth)
        return TxRequest(
            to=self.address,
            data=abi.POOL_SETTLE.encode(*args),
            method="settle",
            args=args,
            gas_limit=SETTLE_GAS_LIMIT,
        )

    def build_withdraw_bonds(self, action: WithdrawBonds) -> TxRequest:
        max_amount = action.max_amount or MAX_UINT_256
        args = (action.recipient, max_amount)
        return TxRequest(
            to=self.address,
            data=abi.POOL_WITHDRAW_BONDS.encode(*args),
            method="withdrawBonds",
            args=args,
        )

    def build_remove_quote_token(self, action: RemoveQuoteToken) -> TxRequest:
        args = (decimal_to_wad(action.amount), action.bucket_index)
        return TxRequest(
            to=self.address,
            data=abi.POOL_REMOVE_QUOTE_TOKEN.encode(*args),
            method="removeQuoteToken",
            args=args,
        )

    def build_remove_collateral(self, action: RemoveCollateral) -> TxRequest:
        args = (decimal_to_wad(action.amount), action.bucket_index)
        return TxRequest(
            to=self.address,
            data=abi.POOL_REMOVE_COLLATERAL.encode(*args),
            method="removeCollateral",
            args=args,
        )
