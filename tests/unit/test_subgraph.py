# PATH: tests/unit/test_subgraph.py
"""
Unit tests for the pool subgraph client.
"""

import json
from decimal import Decimal

import httpx
import pytest

from core.exceptions import IndexerError
from discovery.subgraph import SubgraphClient

URL = "https://subgraph.example/ajna"
POOL = "0xAbCdEf0000000000000000000000000000000001"


def client_for(handler) -> SubgraphClient:
    return SubgraphClient(URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def responding(data, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(200, json={"data": data})
    return handler


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_loans(self):
        seen = []
        client = client_for(responding({
            "pool": {"lup": "1.05"},
            "loans": [
                {"borrower": "0x01", "inLiquidation": False, "thresholdPrice": "1.2"},
                {"borrower": "0x02", "inLiquidation": True, "thresholdPrice": "0.9"},
            ],
        }, seen))

        result = await client.get_loans(POOL)

        assert result.lup == Decimal("1.05")
        assert [loan.borrower for loan in result.loans] == ["0x01", "0x02"]
        assert result.loans[1].in_liquidation is True
        assert seen[0]["variables"] == {"poolId": POOL.lower()}

    @pytest.mark.asyncio
    async def test_get_liquidations(self):
        seen = []
        client = client_for(responding({
            "pool": {
                "hpb": "1500.5",
                "hpbIndex": 3100,
                "liquidationAuctions": [
                    {"borrower": "0x03", "collateralRemaining": "2.5", "kickTime": "1700000000", "referencePrice": "1.3"},
                ],
            },
        }, seen))

        result = await client.get_liquidations(POOL, Decimal("0.01"))

        assert result.hpb == Decimal("1500.5")
        assert result.hpb_index == 3100
        auction = result.auctions[0]
        assert auction.kick_time == 1_700_000_000
        assert auction.collateral_remaining == Decimal("2.5")
        assert auction.reference_price == Decimal("1.3")
        assert seen[0]["variables"]["minCollateral"] == "0.01"

    @pytest.mark.asyncio
    async def test_unknown_pool_has_no_auctions(self):
        result = await client_for(responding({"pool": None})).get_liquidations(POOL, Decimal("0"))
        assert result.auctions == []
        assert result.hpb == Decimal("0")

    @pytest.mark.asyncio
    async def test_get_unsettled_auctions(self):
        client = client_for(responding({
            "liquidationAuctions": [
                {"borrower": "0x04", "kickTime": "100", "debtRemaining": "3.2", "collateralRemaining": "0"},
            ],
        }))

        auctions = await client.get_unsettled_auctions(POOL)

        assert auctions[0].debt_remaining == Decimal("3.2")
        assert auctions[0].collateral_remaining == Decimal("0")

    @pytest.mark.asyncio
    async def test_highest_meaningful_bucket(self):
        client = client_for(responding({"buckets": [{"bucketIndex": "2950"}]}))
        assert await client.get_highest_meaningful_bucket(POOL, Decimal("0.001")) == 2950

    @pytest.mark.asyncio
    async def test_no_meaningful_bucket(self):
        client = client_for(responding({"buckets": []}))
        assert await client.get_highest_meaningful_bucket(POOL, Decimal("0.001")) is None


class TestErrors:
    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = client_for(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(IndexerError) as exc_info:
            await client.get_loans(POOL)
        assert exc_info.value.details["status"] == 503

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        client = client_for(lambda request: httpx.Response(
            200, json={"errors": [{"message": "indexing_error"}]}
        ))
        with pytest.raises(IndexerError) as exc_info:
            await client.get_unsettled_auctions(POOL)
        assert "indexing_error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(IndexerError):
            await client_for(handler).get_loans(POOL)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(IndexerError):
            await client.get_loans(POOL)
