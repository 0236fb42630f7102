"""
config/schema.py - Typed keeper configuration.

The raw YAML mapping is validated once by parse_config. Every missing or
invalid field is collected; a single ConfigError lists them all. Errors for
absent required fields start with "missing".
"""

import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from eth_utils import is_address

from core.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_DELAY_BETWEEN_ACTIONS,
    DEFAULT_DELAY_BETWEEN_RUNS,
    DEFAULT_GAS_LIMIT_PADDING_PCT,
    DEFAULT_GAS_PRICE_MULTIPLIER,
    DEFAULT_MIN_AUCTION_AGE,
    DEFAULT_SETTLEMENT_BUCKET_DEPTH,
    DEFAULT_SETTLEMENT_MAX_ITERATIONS,
    DEFAULT_SLIPPAGE_PCT,
    DEFAULT_UNISWAP_FEE_TIER,
    DEFAULT_VENUE_TIMEOUT_SECONDS,
    PoolPriceReference,
    PriceSource,
    RedeemAs,
    VenueId,
)
from core.exceptions import ConfigError

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class PriceOrigin:
    """Where a pool's feed price comes from."""
    source: PriceSource
    value: Decimal | None = None
    query: str | None = None
    reference: PoolPriceReference | None = None
    invert: bool = False


@dataclass(frozen=True)
class KickSettings:
    min_debt: Decimal
    price_factor: Decimal


@dataclass(frozen=True)
class TakeSettings:
    min_collateral: Decimal
    hpb_price_factor: Decimal | None = None
    market_price_factor: Decimal | None = None
    venues: tuple[VenueId, ...] = ()
    slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT

    @property
    def external_configured(self) -> bool:
        return bool(self.venues) and self.market_price_factor is not None

    @property
    def arb_take_configured(self) -> bool:
        return self.hpb_price_factor is not None


@dataclass(frozen=True)
class SettlementSettings:
    enabled: bool = False
    min_auction_age: int = DEFAULT_MIN_AUCTION_AGE
    max_iterations: int = DEFAULT_SETTLEMENT_MAX_ITERATIONS
    max_bucket_depth: int = DEFAULT_SETTLEMENT_BUCKET_DEPTH
    check_bot_incentive: bool = True


@dataclass(frozen=True)
class LpRewardSettings:
    """Redeem LP awarded by this keeper's arbTakes."""
    redeem_as: RedeemAs
    min_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class PoolConfig:
    """Per-pool thresholds, read-only."""
    name: str
    address: str
    price: PriceOrigin
    kick: KickSettings | None = None
    take: TakeSettings | None = None
    settlement: SettlementSettings = field(default_factory=SettlementSettings)
    collect_bond: bool = False
    collect_lp_reward: LpRewardSettings | None = None


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0


@dataclass(frozen=True)
class OneInchSettings:
    api_url: str
    router: str = ""
    api_key: str = ""
    source_id: int = 1
    timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS
    retry: RetrySettings = field(default_factory=RetrySettings)


@dataclass(frozen=True)
class UniswapV3Settings:
    quoter_address: str
    router: str
    permit2: str
    fee_tier: int = DEFAULT_UNISWAP_FEE_TIER
    source_id: int = 2
    timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class ConstantProductSettings:
    factory_address: str
    router: str
    source_id: int = 3
    timeout_seconds: float = DEFAULT_VENUE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class VenueSettings:
    oneinch: OneInchSettings | None = None
    uniswap_v3: UniswapV3Settings | None = None
    constant_product: ConstantProductSettings | None = None

    def configured(self) -> tuple[VenueId, ...]:
        return tuple(
            venue for venue in VenueId
            if getattr(self, venue.value) is not None
        )


@dataclass(frozen=True)
class KeeperConfig:
    """Validated keeper configuration."""
    eth_rpc_url: str
    subgraph_url: str
    keeper_keystore: str
    chain_id: int
    pool_info_utils: str
    pools: tuple[PoolConfig, ...]
    dry_run: bool = False
    delay_between_actions: float = DEFAULT_DELAY_BETWEEN_ACTIONS
    delay_between_runs: float = DEFAULT_DELAY_BETWEEN_RUNS
    gas_limit_padding_pct: int = DEFAULT_GAS_LIMIT_PADDING_PCT
    gas_price_multiplier: Decimal = DEFAULT_GAS_PRICE_MULTIPLIER
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    taker_address: str | None = None
    coingecko_api_key: str = ""
    venues: VenueSettings = field(default_factory=VenueSettings)

    @property
    def external_takes_enabled(self) -> bool:
        return bool(self.taker_address) and any(
            p.take is not None and p.take.external_configured for p in self.pools
        )


# =============================================================================
# PARSING
# =============================================================================

def resolve_env(value: Any, errors: list[str], path: str = "") -> Any:
    """Replace ${VAR} placeholders in every string of a YAML tree."""
    if isinstance(value, dict):
        return {k: resolve_env(v, errors, f"{path}.{k}" if path else str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env(v, errors, f"{path}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, str):
        def substitute(match: re.Match) -> str:
            name = match.group(1)
            resolved = os.getenv(name)
            if resolved is None:
                errors.append(f"missing environment variable: {name} (for {path})")
                return ""
            return resolved
        return ENV_PATTERN.sub(substitute, value)
    return value


class _Reader:
    """Field accessors that record errors instead of raising."""

    def __init__(self, errors: list[str]):
        self.errors = errors

    def section(self, data: Any, path: str) -> dict[str, Any]:
        if data is None:
            return {}
        if not isinstance(data, dict):
            self.errors.append(f"invalid {path}: expected a mapping")
            return {}
        return data

    def string(self, data: dict, key: str, path: str, required: bool = True, default: str = "") -> str:
        value = data.get(key)
        if value is None or value == "":
            if required:
                self.errors.append(f"missing {path}.{key}" if path else f"missing {key}")
            return default
        if not isinstance(value, str):
            self.errors.append(f"invalid {self._name(path, key)}: expected a string")
            return default
        return value

    def address(self, data: dict, key: str, path: str, required: bool = True) -> str | None:
        value = self.string(data, key, path, required=required)
        if not value:
            return None
        if not is_address(value):
            self.errors.append(f"invalid {self._name(path, key)}: not an address: {value}")
            return None
        return value

    def decimal(
        self,
        data: dict,
        key: str,
        path: str,
        required: bool = True,
        default: Decimal | None = None,
        positive: bool = False,
    ) -> Decimal | None:
        value = data.get(key)
        if value is None:
            if required:
                self.errors.append(f"missing {self._name(path, key)}")
            return default
        if isinstance(value, bool):
            self.errors.append(f"invalid {self._name(path, key)}: expected a number")
            return default
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            self.errors.append(f"invalid {self._name(path, key)}: expected a number")
            return default
        if not number.is_finite() or number < 0 or (positive and number == 0):
            bound = "> 0" if positive else ">= 0"
            self.errors.append(f"invalid {self._name(path, key)}: must be {bound}")
            return default
        return number

    def integer(self, data: dict, key: str, path: str, default: int, minimum: int = 0) -> int:
        value = data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            self.errors.append(f"invalid {self._name(path, key)}: expected an integer")
            return default
        if value < minimum:
            self.errors.append(f"invalid {self._name(path, key)}: must be >= {minimum}")
            return default
        return value

    def number(self, data: dict, key: str, path: str, default: float) -> float:
        value = data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(f"invalid {self._name(path, key)}: expected a number")
            return default
        if value < 0:
            self.errors.append(f"invalid {self._name(path, key)}: must be >= 0")
            return default
        return float(value)

    def boolean(self, data: dict, key: str, path: str, default: bool) -> bool:
        value = data.get(key, default)
        if not isinstance(value, bool):
            self.errors.append(f"invalid {self._name(path, key)}: expected true or false")
            return default
        return value

    def enum(self, data: dict, key: str, path: str, enum_type, required: bool = True):
        value = data.get(key)
        if value is None:
            if required:
                self.errors.append(f"missing {self._name(path, key)}")
            return None
        try:
            return enum_type(str(value).lower())
        except ValueError:
            allowed = ", ".join(e.value for e in enum_type)
            self.errors.append(f"invalid {self._name(path, key)}: {value!r} (expected one of {allowed})")
            return None

    @staticmethod
    def _name(path: str, key: str) -> str:
        return f"{path}.{key}" if path else key


def _parse_price(r: _Reader, data: Any, path: str) -> PriceOrigin | None:
    if data is None:
        r.errors.append(f"missing {path}")
        return None
    data = r.section(data, path)
    source = r.enum(data, "source", path, PriceSource)
    invert = r.boolean(data, "invert", path, False)

    if source == PriceSource.FIXED:
        value = r.decimal(data, "value", path)
        return PriceOrigin(source=source, value=value, invert=invert)
    if source == PriceSource.COINGECKO:
        query = r.string(data, "query", path)
        return PriceOrigin(source=source, query=query, invert=invert)
    if source == PriceSource.POOL:
        reference = r.enum(data, "reference", path, PoolPriceReference)
        return PriceOrigin(source=source, reference=reference, invert=invert)
    return None


def _parse_take(r: _Reader, data: Any, path: str, configured: tuple[VenueId, ...]) -> TakeSettings | None:
    if data is None:
        return None
    data = r.section(data, path)
    venues = []
    raw_venues = data.get("venues") or []
    if not isinstance(raw_venues, list):
        r.errors.append(f"invalid {path}.venues: expected a list")
        raw_venues = []
    for i, name in enumerate(raw_venues):
        try:
            venue = VenueId(str(name).lower())
        except ValueError:
            r.errors.append(f"invalid {path}.venues[{i}]: unknown venue {name!r}")
            continue
        if venue not in configured:
            r.errors.append(f"invalid {path}.venues[{i}]: venue {venue.value} has no settings under venues")
            continue
        venues.append(venue)

    market_price_factor = r.decimal(data, "market_price_factor", path, required=False, positive=True)
    if venues and market_price_factor is None and "market_price_factor" not in data:
        r.errors.append(f"missing {path}.market_price_factor (required when venues are set)")

    return TakeSettings(
        min_collateral=r.decimal(data, "min_collateral", path, default=Decimal("0")),
        hpb_price_factor=r.decimal(data, "hpb_price_factor", path, required=False, positive=True),
        market_price_factor=market_price_factor,
        venues=tuple(venues),
        slippage_pct=r.decimal(data, "slippage_pct", path, required=False, default=DEFAULT_SLIPPAGE_PCT),
    )


def _parse_pool(r: _Reader, data: Any, path: str, configured: tuple[VenueId, ...]) -> PoolConfig | None:
    data = r.section(data, path)
    if not data:
        return None

    name = r.string(data, "name", path)
    address = r.address(data, "address", path)
    price = _parse_price(r, data.get("price"), f"{path}.price")

    kick = None
    if data.get("kick") is not None:
        kick_data = r.section(data["kick"], f"{path}.kick")
        kick = KickSettings(
            min_debt=r.decimal(kick_data, "min_debt", f"{path}.kick", default=Decimal("0")),
            price_factor=r.decimal(kick_data, "price_factor", f"{path}.kick", default=Decimal("1"), positive=True),
        )

    take = _parse_take(r, data.get("take"), f"{path}.take", configured)

    settle_data = r.section(data.get("settlement"), f"{path}.settlement")
    settlement = SettlementSettings(
        enabled=r.boolean(settle_data, "enabled", f"{path}.settlement", False),
        min_auction_age=r.integer(settle_data, "min_auction_age", f"{path}.settlement", DEFAULT_MIN_AUCTION_AGE),
        max_iterations=r.integer(settle_data, "max_iterations", f"{path}.settlement", DEFAULT_SETTLEMENT_MAX_ITERATIONS, minimum=1),
        max_bucket_depth=r.integer(settle_data, "max_bucket_depth", f"{path}.settlement", DEFAULT_SETTLEMENT_BUCKET_DEPTH, minimum=1),
        check_bot_incentive=r.boolean(settle_data, "check_bot_incentive", f"{path}.settlement", True),
    )

    lp_reward = None
    if data.get("collect_lp_reward") is not None:
        lp_data = r.section(data["collect_lp_reward"], f"{path}.collect_lp_reward")
        redeem_as = r.enum(lp_data, "redeem_as", f"{path}.collect_lp_reward", RedeemAs)
        min_amount = r.decimal(lp_data, "min_amount", f"{path}.collect_lp_reward", required=False, default=Decimal("0"))
        if redeem_as is not None:
            lp_reward = LpRewardSettings(redeem_as=redeem_as, min_amount=min_amount)

    if address is None or price is None:
        return None
    return PoolConfig(
        name=name or address,
        address=address,
        price=price,
        kick=kick,
        take=take,
        settlement=settlement,
        collect_bond=r.boolean(data, "collect_bond", path, False),
        collect_lp_reward=lp_reward,
    )


def _parse_venues(r: _Reader, data: Any) -> VenueSettings:
    data = r.section(data, "venues")

    oneinch = None
    if data.get("oneinch") is not None:
        d = r.section(data["oneinch"], "venues.oneinch")
        retry = r.section(d.get("retry"), "venues.oneinch.retry")
        oneinch = OneInchSettings(
            api_url=r.string(d, "api_url", "venues.oneinch"),
            router=r.string(d, "router", "venues.oneinch", required=False),
            api_key=r.string(d, "api_key", "venues.oneinch", required=False),
            source_id=r.integer(d, "source_id", "venues.oneinch", 1),
            timeout_seconds=r.number(d, "timeout_seconds", "venues.oneinch", DEFAULT_VENUE_TIMEOUT_SECONDS),
            retry=RetrySettings(
                max_attempts=r.integer(retry, "max_attempts", "venues.oneinch.retry", 3, minimum=1),
                base_delay=r.number(retry, "base_delay", "venues.oneinch.retry", 1.0),
                multiplier=r.number(retry, "multiplier", "venues.oneinch.retry", 2.0),
                max_delay=r.number(retry, "max_delay", "venues.oneinch.retry", 8.0),
            ),
        )

    uniswap_v3 = None
    if data.get("uniswap_v3") is not None:
        d = r.section(data["uniswap_v3"], "venues.uniswap_v3")
        uniswap_v3 = UniswapV3Settings(
            quoter_address=r.address(d, "quoter_address", "venues.uniswap_v3") or "",
            router=r.address(d, "router", "venues.uniswap_v3") or "",
            permit2=r.address(d, "permit2", "venues.uniswap_v3") or "",
            fee_tier=r.integer(d, "fee_tier", "venues.uniswap_v3", DEFAULT_UNISWAP_FEE_TIER),
            source_id=r.integer(d, "source_id", "venues.uniswap_v3", 2),
            timeout_seconds=r.number(d, "timeout_seconds", "venues.uniswap_v3", DEFAULT_VENUE_TIMEOUT_SECONDS),
        )

    constant_product = None
    if data.get("constant_product") is not None:
        d = r.section(data["constant_product"], "venues.constant_product")
        constant_product = ConstantProductSettings(
            factory_address=r.address(d, "factory_address", "venues.constant_product") or "",
            router=r.address(d, "router", "venues.constant_product") or "",
            source_id=r.integer(d, "source_id", "venues.constant_product", 3),
            timeout_seconds=r.number(d, "timeout_seconds", "venues.constant_product", DEFAULT_VENUE_TIMEOUT_SECONDS),
        )

    return VenueSettings(oneinch=oneinch, uniswap_v3=uniswap_v3, constant_product=constant_product)


def parse_config(raw: Any) -> KeeperConfig:
    """
    Validate a raw configuration mapping.

    Raises:
        ConfigError: Listing every missing or invalid field
    """
    errors: list[str] = []
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping", errors=["invalid configuration root"])

    data = resolve_env(raw, errors)
    r = _Reader(errors)

    venues = _parse_venues(r, data.get("venues"))
    configured = venues.configured()

    raw_pools = data.get("pools")
    pools: list[PoolConfig] = []
    if not raw_pools:
        errors.append("missing pools")
    elif not isinstance(raw_pools, list):
        errors.append("invalid pools: expected a list")
    else:
        seen: set[str] = set()
        for i, pool_data in enumerate(raw_pools):
            pool = _parse_pool(r, pool_data, f"pools[{i}]", configured)
            if pool is None:
                continue
            if pool.address.lower() in seen:
                errors.append(f"invalid pools[{i}].address: duplicate pool {pool.address}")
                continue
            seen.add(pool.address.lower())
            pools.append(pool)

    chain_id = data.get("chain_id")
    if chain_id is None:
        errors.append("missing chain_id")
        chain_id = 0
    elif isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        errors.append("invalid chain_id: expected a positive integer")
        chain_id = 0

    padding = r.integer(data, "gas_limit_padding_pct", "", DEFAULT_GAS_LIMIT_PADDING_PCT)
    multiplier = r.decimal(
        data, "gas_price_multiplier", "", required=False,
        default=DEFAULT_GAS_PRICE_MULTIPLIER, positive=True,
    )

    config = KeeperConfig(
        eth_rpc_url=r.string(data, "eth_rpc_url", ""),
        subgraph_url=r.string(data, "subgraph_url", ""),
        keeper_keystore=r.string(data, "keeper_keystore", ""),
        chain_id=chain_id,
        pool_info_utils=r.address(data, "pool_info_utils", "") or "",
        pools=tuple(pools),
        dry_run=r.boolean(data, "dry_run", "", False),
        delay_between_actions=r.number(data, "delay_between_actions", "", DEFAULT_DELAY_BETWEEN_ACTIONS),
        delay_between_runs=r.number(data, "delay_between_runs", "", DEFAULT_DELAY_BETWEEN_RUNS),
        gas_limit_padding_pct=padding,
        gas_price_multiplier=multiplier,
        confirmation_timeout=r.number(data, "confirmation_timeout", "", DEFAULT_CONFIRMATION_TIMEOUT),
        taker_address=r.address(data, "taker_address", "", required=False),
        coingecko_api_key=r.string(data, "coingecko_api_key", "", required=False),
        venues=venues,
    )

    needs_coingecko = any(p.price.source == PriceSource.COINGECKO for p in pools)
    if needs_coingecko and not config.coingecko_api_key:
        errors.append("missing coingecko_api_key (required by a coingecko price source)")

    if errors:
        raise ConfigError("Invalid keeper configuration", errors=errors)
    return config
