"""
chains/signer.py - Keeper wallet.

Signing is delegated to eth-account. The wallet adds the chain plumbing the
dispatcher needs: simulate, estimate, build, sign, broadcast and wait.
"""

import asyncio
import json
import os
import time
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount

from chains.abi import checksum
from chains.providers import RPCProvider
from core.exceptions import ConfigError, ExecutionError, ErrorCode
from core.logging import get_logger
from core.models import TxReceipt, TxRequest

logger = get_logger(__name__)

KEYSTORE_PASSWORD_ENV = "KEEPER_KEYSTORE_PASSWORD"
RECEIPT_POLL_SECONDS = 2.0


def load_keystore(path: str, password: str | None = None) -> LocalAccount:
    """
    Decrypt a JSON keystore.

    The password defaults to the KEEPER_KEYSTORE_PASSWORD environment
    variable.

    Raises:
        ConfigError: Missing file, missing password or wrong password
    """
    keystore = Path(path)
    if not keystore.exists():
        raise ConfigError("Keystore not readable", errors=[f"missing keystore file: {path}"])

    password = password if password is not None else os.getenv(KEYSTORE_PASSWORD_ENV)
    if password is None:
        raise ConfigError(
            "Keystore password not set",
            errors=[f"missing environment variable: {KEYSTORE_PASSWORD_ENV}"],
        )

    with open(keystore, "r", encoding="utf-8") as f:
        encrypted = json.load(f)

    try:
        private_key = Account.decrypt(encrypted, password)
    except ValueError as e:
        raise ConfigError("Keystore decryption failed", errors=[f"invalid keystore: {e}"]) from e

    return Account.from_key(private_key)


class Wallet:
    """Signer bound to a provider and chain."""

    def __init__(
        self,
        account: LocalAccount,
        provider: RPCProvider,
        chain_id: int,
    ):
        self.account = account
        self.provider = provider
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self.account.address

    async def transaction_count(self) -> int:
        """Pending transaction count, the nonce source of truth."""
        return await self.provider.get_transaction_count(self.address, "pending")

    async def call(self, tx: TxRequest) -> str:
        """
        Simulate tx from this wallet.

        Raises:
            SimulationRevertError: If the call reverts
        """
        return await self.provider.eth_call(tx.to, tx.data, sender=self.address)

    async def estimate_gas(self, tx: TxRequest) -> int:
        return await self.provider.estimate_gas(tx.to_call(self.address))

    async def gas_price(self) -> int:
        return await self.provider.get_gas_price()

    async def send(
        self,
        tx: TxRequest,
        nonce: int,
        gas_limit: int,
        gas_price: int,
    ) -> str:
        """Sign and broadcast, returns the tx hash."""
        payload = {
            "to": checksum(tx.to),
            "data": tx.data,
            "value": tx.value,
            "nonce": nonce,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "chainId": self.chain_id,
        }
        signed = self.account.sign_transaction(payload)
        raw = "0x" + bytes(signed.raw_transaction).hex()
        tx_hash = await self.provider.send_raw_transaction(raw)
        logger.debug(
            f"Broadcast {tx.method} nonce={nonce}",
            extra={"context": {"tx_hash": tx_hash, "nonce": nonce, "gas": gas_limit}},
        )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """
        Poll for the receipt.

        Raises:
            ExecutionError: If no receipt arrives within timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            receipt = await self.provider.get_transaction_receipt(tx_hash)
            if receipt:
                return TxReceipt(
                    tx_hash=tx_hash,
                    status=int(receipt.get("status", "0x0"), 16),
                    block_number=int(receipt.get("blockNumber", "0x0"), 16),
                    gas_used=int(receipt.get("gasUsed", "0x0"), 16),
                )
            if time.monotonic() >= deadline:
                raise ExecutionError(
                    f"No receipt for {tx_hash} after {timeout}s",
                    code=ErrorCode.EXECUTION_TIMEOUT,
                    details={"tx_hash": tx_hash},
                )
            await asyncio.sleep(RECEIPT_POLL_SECONDS)
