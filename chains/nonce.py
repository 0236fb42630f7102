"""
chains/nonce.py - Per-signer nonce sequencing.

Every transaction of the keeper runs through NonceSequencer.run, which
hands the callback a nonce no other in-flight submission of the same signer
holds. Allocation is serialized per signer; the callback itself runs outside
the lock so the next allocation (and other signers) can proceed.

After a failed submission the local counter is resynchronized from the
chain's pending transaction count before the next allocation. A value that
is still leased is never handed out twice, even after a resync.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from core.constants import LeaseState
from core.logging import get_logger
from core.models import NonceLease

logger = get_logger(__name__)

T = TypeVar("T")

CountFetcher = Callable[[str], Awaitable[int]]


class NonceSequencer:
    """
    Serialized nonce assignment for one or more signers.

    Args:
        fetch_count: Async callable returning the chain's pending
            transaction count for an address.
    """

    def __init__(self, fetch_count: CountFetcher):
        self._fetch_count = fetch_count
        self._counters: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._leases: dict[str, dict[int, NonceLease]] = {}
        self._needs_resync: set[str] = set()

    async def run(self, signer: str, fn: Callable[[int], Awaitable[T]]) -> T:
        """
        Run fn with the next nonce of signer.

        The lease is released when fn returns or raises. When fn raises, the
        exception propagates and the signer is marked for resync.
        """
        key = signer.lower()
        lease = await self._allocate(signer, key)

        succeeded = False
        try:
            result = await fn(lease.nonce)
            succeeded = True
            return result
        finally:
            self._release(key, lease, succeeded)

    def leases(self, signer: str) -> list[NonceLease]:
        """In-flight leases of a signer, lowest nonce first."""
        reserved = self._leases.get(signer.lower(), {})
        return [reserved[n] for n in sorted(reserved)]

    def reset(self, signer: str) -> None:
        """Forget the local counter; the next run reads the chain."""
        self._counters.pop(signer.lower(), None)

    def clear(self) -> None:
        """Forget all local counters. In-flight leases stay reserved."""
        self._counters.clear()
        self._needs_resync.clear()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _allocate(self, signer: str, key: str) -> NonceLease:
        async with self._lock_for(key):
            if key not in self._counters or key in self._needs_resync:
                chain_count = await self._fetch_count(signer)
                previous = self._counters.get(key)
                self._counters[key] = chain_count
                self._needs_resync.discard(key)
                if previous is not None and previous != chain_count:
                    logger.info(
                        f"Nonce resynced for {signer}: {previous} -> {chain_count}",
                        extra={"context": {"signer": signer, "nonce": chain_count}},
                    )

            reserved = self._leases.setdefault(key, {})
            nonce = self._counters[key]
            while nonce in reserved:
                nonce += 1

            lease = NonceLease(signer=signer, nonce=nonce)
            reserved[nonce] = lease
            self._counters[key] = nonce + 1

            logger.debug(
                f"Nonce {nonce} leased to {signer}",
                extra={"context": {"signer": signer, "nonce": nonce, "in_flight": len(reserved)}},
            )
            return lease

    def _release(self, key: str, lease: NonceLease, succeeded: bool) -> None:
        self._leases.get(key, {}).pop(lease.nonce, None)
        if succeeded:
            lease.state = LeaseState.CONFIRMED
            return

        lease.state = LeaseState.RELEASED
        self._needs_resync.add(key)
        logger.warning(
            f"Nonce {lease.nonce} released after failure, resync scheduled",
            extra={"context": {"signer": lease.signer, "nonce": lease.nonce}},
        )
