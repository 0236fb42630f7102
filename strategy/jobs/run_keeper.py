#!/usr/bin/env python3
"""
strategy/jobs/run_keeper.py - CLI entrypoint for the liquidation keeper.

Usage:
    python -m strategy.jobs.run_keeper --config keeper.yaml
    python -m strategy.jobs.run_keeper --config keeper.yaml --dry-run --once
"""

import asyncio
import signal
import sys
from dataclasses import replace
from typing import Optional

import click

from chains.erc20 import TokenDecimalsCache
from chains.nonce import NonceSequencer
from chains.providers import RPCProvider
from chains.signer import Wallet, load_keystore
from config import load_config
from config.schema import KeeperConfig
from core.constants import VenueId
from core.exceptions import ConfigError
from core.logging import get_logger, set_global_context, setup_logging
from dex.adapters.base import QuoteVenue
from dex.adapters.constant_product import ConstantProductVenue
from dex.adapters.oneinch import OneInchVenue
from dex.adapters.uniswap_v3 import UniswapV3Venue
from dex.aggregator import QuoteAggregator
from dex.retry import RetryPolicy
from discovery.subgraph import SubgraphClient
from execution.dispatcher import ExecutionDispatcher
from protocol.pool import AjnaPool
from strategy.auction_price import AuctionPriceModel
from strategy.decision import DecisionEngine
from strategy.keeper import Keeper
from strategy.price_feed import PriceFeed

logger = get_logger("keeper.run")


def build_venues(config: KeeperConfig, provider: RPCProvider) -> dict[VenueId, QuoteVenue]:
    """Venue clients for every venue with settings."""
    settings = config.venues
    venues: dict[VenueId, QuoteVenue] = {}

    if settings.oneinch is not None:
        s = settings.oneinch
        venues[VenueId.ONEINCH] = OneInchVenue(
            api_url=s.api_url,
            chain_id=config.chain_id,
            api_key=s.api_key,
            retry_policy=RetryPolicy(
                max_attempts=s.retry.max_attempts,
                base_delay=s.retry.base_delay,
                multiplier=s.retry.multiplier,
                max_delay=s.retry.max_delay,
            ),
            source_id=s.source_id,
            timeout_seconds=s.timeout_seconds,
        )
    if settings.uniswap_v3 is not None:
        s = settings.uniswap_v3
        venues[VenueId.UNISWAP_V3] = UniswapV3Venue(
            provider=provider,
            quoter_address=s.quoter_address,
            router=s.router,
            permit2=s.permit2,
            fee_tier=s.fee_tier,
            source_id=s.source_id,
            timeout_seconds=s.timeout_seconds,
        )
    if settings.constant_product is not None:
        s = settings.constant_product
        venues[VenueId.CONSTANT_PRODUCT] = ConstantProductVenue(
            provider=provider,
            factory_address=s.factory_address,
            router=s.router,
            source_id=s.source_id,
            timeout_seconds=s.timeout_seconds,
        )
    return venues


def build_keeper(config: KeeperConfig) -> tuple[Keeper, list]:
    """
    Wire every component from a validated config.

    Returns the keeper and the clients to close on shutdown.
    """
    provider = RPCProvider(chain_id=config.chain_id, rpc_urls=[config.eth_rpc_url])
    wallet = Wallet(load_keystore(config.keeper_keystore), provider, config.chain_id)
    sequencer = NonceSequencer(lambda _signer: wallet.transaction_count())
    dispatcher = ExecutionDispatcher(
        wallet=wallet,
        sequencer=sequencer,
        dry_run=config.dry_run,
        gas_limit_padding_pct=config.gas_limit_padding_pct,
        gas_price_multiplier=config.gas_price_multiplier,
        confirmation_timeout=config.confirmation_timeout,
    )

    indexer = SubgraphClient(config.subgraph_url)
    price_feed = PriceFeed(coingecko_api_key=config.coingecko_api_key)
    venues = build_venues(config, provider)

    pools = {
        p.address: AjnaPool(
            provider=provider,
            address=p.address,
            pool_info_utils=config.pool_info_utils,
            name=p.name,
            taker_address=config.taker_address,
        )
        for p in config.pools
    }

    decision = DecisionEngine(
        indexer=indexer,
        aggregator=QuoteAggregator(),
        venues=venues,
        decimals_cache=TokenDecimalsCache(provider),
        price_model=AuctionPriceModel(),
        taker_address=config.taker_address,
    )

    keeper = Keeper(
        config=config,
        pools=pools,
        indexer=indexer,
        decision=decision,
        price_feed=price_feed,
        dispatcher=dispatcher,
        signer_address=wallet.address,
    )
    closeables = [provider, indexer, price_feed] + [
        v for v in venues.values() if hasattr(v, "close")
    ]
    return keeper, closeables


async def run(config: KeeperConfig, once: bool) -> None:
    keeper, closeables = build_keeper(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, keeper.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    logger.info(
        "Keeper started",
        extra={"context": {
            "signer": keeper.signer_address,
            "pools": [p.name for p in config.pools],
            "dry_run": config.dry_run,
            "once": once,
        }},
    )

    try:
        if once:
            summaries = await keeper.run_once()
            logger.info(
                "Single sweep complete",
                extra={"context": {"pools": [s.to_dict() for s in summaries]}},
            )
        else:
            await keeper.run_forever()
    finally:
        for client in closeables:
            await client.close()
        logger.info("Keeper stopped")


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    required=True,
    type=click.Path(),
    help="Keeper YAML configuration",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Log actions instead of sending transactions (overrides config)",
)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Run a single sweep and exit",
)
@click.option(
    "--log-level",
    "-l",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=False,
    help="Use JSON log format",
)
@click.option(
    "--log-file",
    default=None,
    help="Also write JSON logs to this file",
)
def main(
    config_path: str,
    dry_run: bool,
    once: bool,
    log_level: str,
    json_logs: bool,
    log_file: Optional[str],
) -> None:
    """
    Liquidation keeper.

    Kicks unhealthy loans, takes auctioned collateral, settles bad debt
    and withdraws kicker bonds.
    """
    setup_logging(level=log_level, json_output=json_logs, log_file=log_file)
    set_global_context(service="keeper", version="0.1.0")

    try:
        config = load_config(config_path)
        if dry_run:
            config = replace(config, dry_run=True)
        asyncio.run(run(config, once))
    except ConfigError as e:
        logger.error(
            f"Invalid configuration: {e}",
            extra={"context": {"errors": e.errors}},
        )
        click.echo(str(e), err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Keeper interrupted")
    except Exception as e:
        logger.error(
            f"Keeper error: {e}",
            extra={"context": {"error": str(e)}},
            exc_info=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
