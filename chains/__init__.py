"""
chains - Chain access for KEEPER.

- providers.py: JSON-RPC with failover
- abi.py: contract function encoding
- nonce.py: per-signer nonce sequencing
- signer.py: keystore loading and the keeper wallet
- erc20.py: token reads and the decimals cache
"""

from chains.erc20 import Erc20Client, TokenDecimalsCache
from chains.nonce import NonceSequencer
from chains.providers import RPCProvider, RPCResponse
from chains.signer import Wallet, load_keystore

__all__ = [
    "Erc20Client",
    "NonceSequencer",
    "RPCProvider",
    "RPCResponse",
    "TokenDecimalsCache",
    "Wallet",
    "load_keystore",
]
