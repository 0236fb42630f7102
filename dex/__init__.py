"""
dex - Quote aggregation across external venues.
"""

from dex.aggregator import QuoteAggregator, select_best
from dex.retry import RetryPolicy

__all__ = ["QuoteAggregator", "RetryPolicy", "select_best"]
