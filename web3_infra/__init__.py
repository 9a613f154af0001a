"""Limit order workflow — web3_infra package.

- RPCManager: multi-endpoint AsyncWeb3 pool with failover
- ChainClient: contract reads and signed transactions
- OrderSigner: EIP-712 order signing with local verification
"""

from .chain_client import (
    ChainClient,
    ChainClientConfig,
    GasAbortError,
    TransactionError,
    TransactionRevertedError,
)
from .eip712_signer import EIP712Domain, LocalSigner, OrderSigner, SignedOrder, Signer
from .rpc_manager import RPCError, RPCManager

__all__ = [
    "ChainClient",
    "ChainClientConfig",
    "EIP712Domain",
    "GasAbortError",
    "LocalSigner",
    "OrderSigner",
    "RPCError",
    "RPCManager",
    "SignedOrder",
    "Signer",
    "TransactionError",
    "TransactionRevertedError",
]
