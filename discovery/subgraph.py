"""
discovery/subgraph.py - Indexer client.

GraphQL over httpx against the pool subgraph. The subgraph reports prices
and amounts as decimal strings; they are parsed to Decimal. Pool ids are
lowercase addresses.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from core.exceptions import IndexerError
from core.logging import get_logger
from core.math import safe_decimal

logger = get_logger(__name__)


LOANS_QUERY = """
query GetLoans($poolId: String!) {
  pool(id: $poolId) {
    lup
  }
  loans(where: {poolAddress: $poolId}) {
    borrower
    inLiquidation
    thresholdPrice
  }
}
"""

LIQUIDATIONS_QUERY = """
query GetLiquidations($poolId: String!, $minCollateral: BigDecimal!) {
  pool(id: $poolId) {
    hpb
    hpbIndex
    liquidationAuctions(where: {collateralRemaining_gt: $minCollateral}) {
      borrower
      collateralRemaining
      kickTime
      referencePrice
    }
  }
}
"""

UNSETTLED_AUCTIONS_QUERY = """
query GetUnsettledAuctions($poolId: String!) {
  liquidationAuctions(where: {pool: $poolId, settled: false}) {
    borrower
    kickTime
    debtRemaining
    collateralRemaining
  }
}
"""

HIGHEST_MEANINGFUL_BUCKET_QUERY = """
query GetHighestMeaningfulBucket($poolId: String!, $minDeposit: BigDecimal!) {
  buckets(
    where: {poolAddress: $poolId, deposit_gt: $minDeposit}
    first: 1
    orderBy: bucketPrice
    orderDirection: desc
  ) {
    bucketIndex
  }
}
"""


@dataclass
class IndexedLoan:
    borrower: str
    in_liquidation: bool
    threshold_price: Decimal


@dataclass
class LoansResult:
    lup: Decimal
    loans: list[IndexedLoan] = field(default_factory=list)


@dataclass
class IndexedAuction:
    borrower: str
    kick_time: int
    reference_price: Decimal = Decimal("0")
    collateral_remaining: Decimal = Decimal("0")
    debt_remaining: Decimal = Decimal("0")


@dataclass
class LiquidationsResult:
    hpb: Decimal
    hpb_index: int
    auctions: list[IndexedAuction] = field(default_factory=list)


class SubgraphClient:
    """
    Pool subgraph queries.

    Transport errors, non-200 responses and GraphQL errors raise
    IndexerError.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        start_ms = int(time.time() * 1000)

        try:
            resp = await client.post(self.url, json={"query": query, "variables": variables})
        except httpx.HTTPError as e:
            raise IndexerError(
                f"Subgraph request failed: {e}",
                details={"url": self.url},
            ) from e

        if resp.status_code != 200:
            raise IndexerError(
                f"Subgraph returned HTTP {resp.status_code}",
                details={"url": self.url, "status": resp.status_code},
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise IndexerError("Subgraph returned invalid JSON", details={"url": self.url}) from e

        if body.get("errors"):
            messages = [err.get("message", str(err)) for err in body["errors"]]
            raise IndexerError(
                f"Subgraph query error: {'; '.join(messages)}",
                details={"url": self.url, "errors": messages},
            )

        logger.debug(
            "Subgraph query ok",
            extra={"context": {"latency_ms": int(time.time() * 1000) - start_ms}},
        )
        return body.get("data") or {}

    async def get_loans(self, pool_address: str) -> LoansResult:
        data = await self.query(LOANS_QUERY, {"poolId": pool_address.lower()})
        pool = data.get("pool") or {}
        return LoansResult(
            lup=safe_decimal(pool.get("lup")),
            loans=[
                IndexedLoan(
                    borrower=loan["borrower"],
                    in_liquidation=bool(loan.get("inLiquidation")),
                    threshold_price=safe_decimal(loan.get("thresholdPrice")),
                )
                for loan in data.get("loans") or []
            ],
        )

    async def get_liquidations(
        self,
        pool_address: str,
        min_collateral: Decimal,
    ) -> LiquidationsResult:
        data = await self.query(
            LIQUIDATIONS_QUERY,
            {"poolId": pool_address.lower(), "minCollateral": str(min_collateral)},
        )
        pool = data.get("pool") or {}
        return LiquidationsResult(
            hpb=safe_decimal(pool.get("hpb")),
            hpb_index=int(pool.get("hpbIndex") or 0),
            auctions=[
                IndexedAuction(
                    borrower=auction["borrower"],
                    kick_time=int(auction["kickTime"]),
                    reference_price=safe_decimal(auction.get("referencePrice")),
                    collateral_remaining=safe_decimal(auction.get("collateralRemaining")),
                )
                for auction in pool.get("liquidationAuctions") or []
            ],
        )

    async def get_unsettled_auctions(self, pool_address: str) -> list[IndexedAuction]:
        data = await self.query(UNSETTLED_AUCTIONS_QUERY, {"poolId": pool_address.lower()})
        return [
            IndexedAuction(
                borrower=auction["borrower"],
                kick_time=int(auction["kickTime"]),
                collateral_remaining=safe_decimal(auction.get("collateralRemaining")),
                debt_remaining=safe_decimal(auction.get("debtRemaining")),
            )
            for auction in data.get("liquidationAuctions") or []
        ]

    async def get_highest_meaningful_bucket(
        self,
        pool_address: str,
        min_deposit: Decimal,
    ) -> int | None:
        """Index of the highest-priced bucket with deposit above min_deposit."""
        data = await self.query(
            HIGHEST_MEANINGFUL_BUCKET_QUERY,
            {"poolId": pool_address.lower(), "minDeposit": str(min_deposit)},
        )
        buckets = data.get("buckets") or []
        if not buckets:
            return None
        return int(buckets[0]["bucketIndex"])
