# PATH: strategy/__init__.py
"""Keeper strategy: auction pricing, decisions, settlement and the sweep loop."""

from strategy.auction_price import AuctionPriceModel, auction_price, opening_price
from strategy.bonds import BondCollector
from strategy.decision import DecisionEngine, TakeDecision
from strategy.keeper import Keeper, PoolSweep
from strategy.price_feed import PriceFeed
from strategy.settlement import IncentiveCheck, SettlementCheck, SettlementEngine

__all__ = [
    "AuctionPriceModel",
    "BondCollector",
    "DecisionEngine",
    "IncentiveCheck",
    "Keeper",
    "PoolSweep",
    "PriceFeed",
    "SettlementCheck",
    "SettlementEngine",
    "TakeDecision",
    "auction_price",
    "opening_price",
]
