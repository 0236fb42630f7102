"""
chains/providers.py - JSON-RPC provider with failover.

Provides reliable RPC access with:
- Multiple endpoint failover
- Request timeout handling
- Revert detection (a revert is deterministic, no failover)
- Latency tracking
"""

import os
import time
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

from core.logging import get_logger
from core.exceptions import InfraError, RPCError, SimulationRevertError, ErrorCode

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

REVERT_MARKERS = ("revert", "execution reverted", "invalid opcode")


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


def is_revert_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in REVERT_MARKERS)


class RPCProvider:
    """
    RPC provider with failover support.

    Tries each endpoint in order until one succeeds. Reverts raise
    SimulationRevertError straight away.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_urls: list[str],
        timeout_seconds: float = 10,
        client: httpx.AsyncClient | None = None,
    ):
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._request_id = 0

        self.rpc_urls = self._resolve_urls(rpc_urls)
        self.stats: dict[str, RPCStats] = {
            url: RPCStats(url=url) for url in self.rpc_urls
        }

    def _resolve_urls(self, urls: list[str]) -> list[str]:
        """Resolve the ALCHEMY_API_KEY placeholder in URLs."""
        api_key = os.getenv("ALCHEMY_API_KEY", "")
        resolved = []
        for url in urls:
            resolved_url = url.replace("${ALCHEMY_API_KEY}", api_key)
            if api_key or "${ALCHEMY_API_KEY}" not in url:
                resolved.append(resolved_url)
        return resolved

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        method: str,
        params: list | None = None,
    ) -> RPCResponse:
        """
        Make an RPC call with failover.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPCResponse with result and metadata

        Raises:
            SimulationRevertError: If the node reports a revert
            RPCError: If all endpoints fail
        """
        if not self.rpc_urls:
            raise RPCError(
                "No RPC endpoints configured",
                details={"chain_id": self.chain_id},
            )

        client = await self._get_client()
        last_error: Exception | None = None

        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1

            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params or [],
                "id": self._next_request_id(),
            }

            start_ms = int(time.time() * 1000)

            try:
                resp = await client.post(url, json=payload)
                latency_ms = int(time.time() * 1000) - start_ms
                result = resp.json()
            except httpx.TimeoutException as e:
                latency_ms = int(time.time() * 1000) - start_ms
                stats.failed_requests += 1
                stats.last_error = f"Timeout after {latency_ms}ms"
                last_error = e
                logger.debug(f"RPC timeout for {url}: {latency_ms}ms")
                continue
            except (httpx.HTTPError, ValueError) as e:
                stats.failed_requests += 1
                stats.last_error = str(e)
                last_error = e
                logger.debug(f"RPC failed for {url}: {e}")
                continue

            if "error" in result:
                error = result["error"]
                error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                stats.failed_requests += 1
                stats.last_error = error_msg

                if is_revert_message(error_msg):
                    raise SimulationRevertError(
                        f"{method} reverted: {error_msg}",
                        details={
                            "method": method,
                            "data": error.get("data") if isinstance(error, dict) else None,
                        },
                    )

                last_error = RPCError(
                    f"RPC error: {error_msg}",
                    details={"url": url, "method": method},
                )
                logger.debug(f"RPC error from {url}: {error_msg}")
                continue

            stats.successful_requests += 1
            stats.total_latency_ms += latency_ms

            return RPCResponse(
                result=result.get("result"),
                latency_ms=latency_ms,
                endpoint_used=url,
            )

        raise RPCError(
            f"All RPC endpoints failed for chain {self.chain_id}",
            details={
                "chain_id": self.chain_id,
                "method": method,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last_error),
            },
        )

    async def get_chain_id(self) -> int:
        response = await self.call("eth_chainId")
        return int(response.result, 16)

    async def get_block_number(self) -> int:
        response = await self.call("eth_blockNumber")
        return int(response.result, 16)

    async def get_block_timestamp(self, block: str = "latest") -> int:
        """Timestamp of a block in unix seconds."""
        response = await self.call("eth_getBlockByNumber", [block, False])
        return int(response.result["timestamp"], 16)

    async def eth_call(
        self,
        to: str,
        data: str,
        block: str = "latest",
        sender: str | None = None,
    ) -> str:
        """
        Make eth_call.

        Args:
            to: Contract address
            data: Encoded call data
            block: Block number or "latest"
            sender: Optional "from" address (simulations)

        Returns:
            Hex-encoded return data
        """
        tx: dict[str, Any] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        response = await self.call("eth_call", [tx, block])
        return response.result or "0x"

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        response = await self.call("eth_estimateGas", [tx])
        return int(response.result, 16)

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        response = await self.call("eth_gasPrice")
        return int(response.result, 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        response = await self.call("eth_getTransactionCount", [address, block])
        return int(response.result, 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Broadcast a signed transaction, returns the tx hash."""
        response = await self.call("eth_sendRawTransaction", [raw_tx])
        if not response.result:
            raise InfraError(
                "eth_sendRawTransaction returned no hash",
                code=ErrorCode.EXECUTION_SUBMIT_FAILED,
            )
        return response.result

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        """Receipt of a mined transaction, None while pending."""
        response = await self.call("eth_getTransactionReceipt", [tx_hash])
        return response.result

    def get_stats_summary(self) -> dict:
        """Get statistics summary for all endpoints."""
        return {
            url: {
                "total_requests": s.total_requests,
                "success_rate": round(s.success_rate, 3),
                "avg_latency_ms": s.avg_latency_ms,
                "last_error": s.last_error,
            }
            for url, s in self.stats.items()
        }
