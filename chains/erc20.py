"""
chains/erc20.py - ERC-20 reads and the token decimals cache.
"""

import asyncio

from chains.abi import ERC20_ALLOWANCE, ERC20_BALANCE_OF, ERC20_DECIMALS
from chains.providers import RPCProvider
from core.logging import get_logger

logger = get_logger(__name__)


class TokenDecimalsCache:
    """
    Read-through cache of token decimals.

    Decimals are immutable per token address, so entries are never evicted.
    Concurrent misses for the same token share one lookup.
    """

    def __init__(self, provider: RPCProvider):
        self.provider = provider
        self._decimals: dict[str, int] = {}
        self._pending: dict[str, asyncio.Task] = {}

    def __contains__(self, token: str) -> bool:
        return token.lower() in self._decimals

    def __len__(self) -> int:
        return len(self._decimals)

    def seed(self, token: str, decimals: int) -> None:
        """Record decimals known ahead of time (config, tests)."""
        self._decimals[token.lower()] = decimals

    async def get(self, token: str) -> int:
        key = token.lower()
        if key in self._decimals:
            return self._decimals[key]

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(token))
            self._pending[key] = task
        try:
            decimals = await task
        finally:
            self._pending.pop(key, None)

        self._decimals[key] = decimals
        return decimals

    async def _fetch(self, token: str) -> int:
        data = await self.provider.eth_call(token, ERC20_DECIMALS.encode())
        (decimals,) = ERC20_DECIMALS.decode(data)
        logger.debug(f"Token {token} has {decimals} decimals")
        return int(decimals)


class Erc20Client:
    """Balance and allowance reads."""

    def __init__(self, provider: RPCProvider, decimals_cache: TokenDecimalsCache):
        self.provider = provider
        self.decimals_cache = decimals_cache

    async def decimals(self, token: str) -> int:
        return await self.decimals_cache.get(token)

    async def balance_of(self, token: str, owner: str) -> int:
        data = await self.provider.eth_call(token, ERC20_BALANCE_OF.encode(owner))
        return int(ERC20_BALANCE_OF.decode(data)[0])

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        data = await self.provider.eth_call(token, ERC20_ALLOWANCE.encode(owner, spender))
        return int(ERC20_ALLOWANCE.decode(data)[0])
