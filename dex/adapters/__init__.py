"""
dex/adapters/ - External liquidity venues.

Adapters:
- oneinch: 1inch swap API (two-step quote / swap)
- uniswap_v3: Uniswap V3 QuoterV2
- constant_product: x * y = k pair simulation
"""

from dex.adapters.base import QuoteVenue
from dex.adapters.constant_product import ConstantProductVenue
from dex.adapters.oneinch import OneInchVenue
from dex.adapters.uniswap_v3 import UniswapV3Venue

__all__ = [
    "ConstantProductVenue",
    "OneInchVenue",
    "QuoteVenue",
    "UniswapV3Venue",
]
