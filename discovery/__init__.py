"""
discovery - Indexer access for KEEPER.
"""

from discovery.subgraph import (
    IndexedAuction,
    IndexedLoan,
    LiquidationsResult,
    LoansResult,
    SubgraphClient,
)

__all__ = [
    "IndexedAuction",
    "IndexedLoan",
    "LiquidationsResult",
    "LoansResult",
    "SubgraphClient",
]
