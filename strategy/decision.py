"""
strategy/decision.py - Which kicks and takes to attempt.

Kick:
    indexer loan not in liquidation, live loan not kicked,
    debt >= min_debt, threshold price >= lup (under-collateralized),
    feed_price < neutral_price * price_factor.

Take (external liquidity):
    best venue quote for the whole collateral, converted to a price,
    quote_price * market_price_factor >= current auction price.

ArbTake (pool deposit):
    highest meaningful bucket price * hpb_price_factor > current auction price.

Every candidate is evaluated independently; an error on one is logged and
the next candidate is still evaluated.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, Mapping, Optional

from chains.erc20 import TokenDecimalsCache
from config.schema import PoolConfig
from core.constants import MAX_FENWICK_INDEX, VenueId
from core.exceptions import KeeperError
from core.logging import get_logger
from core.math import apply_factor, from_token_units, short_address, to_token_units
from core.models import ArbTake, Kick, LiquidationAuction, Take
from dex.adapters.base import QuoteVenue
from dex.aggregator import QuoteAggregator
from discovery.subgraph import IndexedAuction, SubgraphClient
from protocol.pool import LendingPool
from strategy.auction_price import AuctionPriceModel

logger = get_logger(__name__)


@dataclass
class TakeDecision:
    """Take and/or arbTake chosen for one auction."""
    auction: LiquidationAuction
    current_price: Decimal
    take: Optional[Take] = None
    arb_take: Optional[ArbTake] = None

    @property
    def has_action(self) -> bool:
        return self.take is not None or self.arb_take is not None


class DecisionEngine:
    """
    Evaluates kick and take candidates for a pool.

    Args:
        indexer: Subgraph client used for candidate discovery
        aggregator: Multi-venue quote aggregator
        venues: Configured venues by id
        decimals_cache: Token decimals shared by every pool
        price_model: Auction price over time
        taker_address: Taker contract, None disables external takes
    """

    def __init__(
        self,
        indexer: SubgraphClient,
        aggregator: QuoteAggregator,
        venues: Mapping[VenueId, QuoteVenue],
        decimals_cache: TokenDecimalsCache,
        price_model: AuctionPriceModel,
        taker_address: str | None = None,
    ):
        self.indexer = indexer
        self.aggregator = aggregator
        self.venues = dict(venues)
        self.decimals_cache = decimals_cache
        self.price_model = price_model
        self.taker_address = taker_address

    # -------------------------------------------------------------------------
    # Kicks
    # -------------------------------------------------------------------------

    async def kick_candidates(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        feed_price: Decimal,
    ) -> AsyncIterator[Kick]:
        settings = pool_config.kick
        if settings is None:
            return

        loans = await self.indexer.get_loans(pool.address)
        for indexed in loans.loans:
            if indexed.in_liquidation:
                continue
            try:
                kick = await self._evaluate_kick(pool, pool_config, indexed.borrower, loans.lup, feed_price)
            except KeeperError as e:
                logger.warning(
                    f"Kick check failed for {short_address(indexed.borrower)}: {e.message}",
                    extra={"context": {"pool": pool_config.name, "borrower": indexed.borrower, "error_code": e.code.value}},
                )
                continue
            if kick is not None:
                yield kick

    async def _evaluate_kick(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        borrower: str,
        lup: Decimal,
        feed_price: Decimal,
    ) -> Kick | None:
        settings = pool_config.kick
        loan = await pool.get_loan(borrower)

        if loan.is_kicked:
            return None
        if loan.debt < settings.min_debt:
            return None
        if loan.threshold_price < lup:
            # Healthy: still collateralized at the lowest utilized price
            return None

        limit = apply_factor(loan.neutral_price, settings.price_factor)
        if feed_price >= limit:
            logger.debug(
                f"Not kicking {short_address(borrower)}: feed {feed_price} not below {limit}",
                extra={"context": {"pool": pool_config.name, "borrower": borrower}},
            )
            return None

        return Kick(
            pool_address=pool.address,
            borrower=borrower,
            limit_index=MAX_FENWICK_INDEX,
            debt=loan.debt,
            threshold_price=loan.threshold_price,
            neutral_price=loan.neutral_price,
            feed_price=feed_price,
        )

    # -------------------------------------------------------------------------
    # Takes
    # -------------------------------------------------------------------------

    def _pool_venues(self, pool_config: PoolConfig) -> list[QuoteVenue]:
        if pool_config.take is None:
            return []
        return [self.venues[v] for v in pool_config.take.venues if v in self.venues]

    def external_takes_enabled(self, pool_config: PoolConfig) -> bool:
        return (
            bool(self.taker_address)
            and pool_config.take is not None
            and pool_config.take.external_configured
            and bool(self._pool_venues(pool_config))
        )

    async def take_candidates(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
    ) -> AsyncIterator[TakeDecision]:
        settings = pool_config.take
        if settings is None:
            return

        liquidations = await self.indexer.get_liquidations(pool.address, settings.min_collateral)
        for indexed in liquidations.auctions:
            try:
                decision = await self._evaluate_auction(pool, pool_config, indexed, liquidations.hpb)
            except KeeperError as e:
                logger.warning(
                    f"Take check failed for {short_address(indexed.borrower)}: {e.message}",
                    extra={"context": {"pool": pool_config.name, "borrower": indexed.borrower, "error_code": e.code.value}},
                )
                continue
            if decision is not None and decision.has_action:
                yield decision

    async def _evaluate_auction(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        indexed: IndexedAuction,
        hpb: Decimal,
    ) -> TakeDecision | None:
        auction = await pool.get_auction(indexed.borrower)
        if not auction.is_active or auction.collateral <= 0:
            return None

        current_price = self.price_model.price_at(auction.reference_price, auction.kick_time)
        decision = TakeDecision(auction=auction, current_price=current_price)

        if self.external_takes_enabled(pool_config):
            decision.take = await self.evaluate_take(pool, pool_config, auction, current_price)
        if pool_config.take.arb_take_configured:
            decision.arb_take = await self.evaluate_arb_take(pool, pool_config, auction, current_price, hpb)
        return decision

    async def evaluate_take(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        auction: LiquidationAuction,
        current_price: Decimal,
    ) -> Take | None:
        """Take with external liquidity when the market pays at least the auction price."""
        settings = pool_config.take
        collateral_token = await pool.collateral_token()
        quote_token = await pool.quote_token()
        collateral_decimals = await self.decimals_cache.get(collateral_token)
        quote_decimals = await self.decimals_cache.get(quote_token)

        amount_in = to_token_units(auction.collateral, collateral_decimals)
        if amount_in <= 0:
            return None

        quote = await self.aggregator.best_quote(
            self._pool_venues(pool_config), amount_in, collateral_token, quote_token
        )
        if quote is None:
            return None

        quote_price = from_token_units(quote.amount_out, quote_decimals) / auction.collateral
        if apply_factor(quote_price, settings.market_price_factor) < current_price:
            logger.debug(
                f"Take of {short_address(auction.borrower)} not profitable: "
                f"market {quote_price} x {settings.market_price_factor} < auction {current_price}",
                extra={"context": {"pool": pool_config.name, "venue": quote.venue}},
            )
            return None

        swap = await self.venues[VenueId(quote.venue)].swap(
            quote, self.taker_address, settings.slippage_pct
        )
        return Take(
            pool_address=pool.address,
            borrower=auction.borrower,
            auction_price=current_price,
            collateral=auction.collateral,
            swap=swap,
            quote=quote,
        )

    async def evaluate_arb_take(
        self,
        pool: LendingPool,
        pool_config: PoolConfig,
        auction: LiquidationAuction,
        current_price: Decimal,
        hpb: Decimal,
    ) -> ArbTake | None:
        """ArbTake into the highest bucket whose deposit covers min_collateral."""
        settings = pool_config.take
        if auction.collateral < settings.min_collateral or hpb <= 0:
            return None

        index = await self.indexer.get_highest_meaningful_bucket(
            pool.address, settings.min_collateral / hpb
        )
        if index is None:
            return None

        bucket = await pool.get_bucket_by_index(index)
        if apply_factor(bucket.price, settings.hpb_price_factor) <= current_price:
            return None

        return ArbTake(
            pool_address=pool.address,
            borrower=auction.borrower,
            bucket_index=bucket.index,
            auction_price=current_price,
            bucket_price=bucket.price,
        )
