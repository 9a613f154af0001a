"""EIP-712 typed-data signing with an explicit ``Signer`` capability.

Signing is CPU-bound (elliptic-curve math), so ``OrderSigner`` runs it in
an executor to keep the event loop responsive. Every signature is checked
locally before it is handed back: the digest is recomputed independently
and the signer is recovered from it.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_utils import keccak, to_checksum_address

from core.errors import SignatureMismatchError
from models.order import Order

logger = structlog.get_logger("web3_infra.eip712_signer")

EIP712_DOMAIN_TYPEHASH = keccak(
    text="EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


# ── Domain ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EIP712Domain:
    """Domain descriptor binding a signature to one contract on one chain."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }

    def separator(self) -> bytes:
        return keccak(
            abi_encode(
                ["bytes32", "bytes32", "bytes32", "uint256", "address"],
                [
                    EIP712_DOMAIN_TYPEHASH,
                    keccak(text=self.name),
                    keccak(text=self.version),
                    self.chain_id,
                    to_checksum_address(self.verifying_contract),
                ],
            )
        )


def eip712_digest(domain: EIP712Domain, struct_hash: bytes) -> bytes:
    """``keccak256("\\x19\\x01" ‖ domainSeparator ‖ structHash)``."""
    return keccak(b"\x19\x01" + domain.separator() + struct_hash)


def typed_data_digest(full_message: dict[str, Any]) -> bytes:
    """Digest ``eth_account`` signs for a full typed-data message."""
    signable = encode_typed_data(full_message=full_message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recover the checksummed address that produced *signature* over *digest*."""
    sig = bytes(signature)
    if len(sig) != 65:
        raise ValueError(f"Invalid signature length: {len(sig)} (expected 65)")
    r = int.from_bytes(sig[:32], "big")
    s = int.from_bytes(sig[32:64], "big")
    v = sig[64]
    # Wallets emit 27/28, eth_keys wants 0/1
    if v >= 27:
        v -= 27
    public_key = keys.Signature(vrs=(v, r, s)).recover_public_key_from_msg_hash(digest)
    return public_key.to_checksum_address()


# ── Signer capability ───────────────────────────────────────────────


class Signer(ABC):
    """An account able to sign typed data and transactions.

    Passed explicitly into every workflow call; nothing reads a "current
    wallet" from shared state.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed account address."""

    @abstractmethod
    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes:
        """Return the 65-byte ``r ‖ s ‖ v`` signature over EIP-712 data."""

    @abstractmethod
    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        """Return the raw signed transaction bytes."""


class LocalSigner(Signer):
    """Signer backed by an in-process ``eth_account`` key."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> LocalSigner:
        if not private_key:
            raise ValueError("private key is empty")
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes:
        signed = self._account.sign_message(encode_typed_data(full_message=full_message))
        return bytes(signed.signature)

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        return bytes(self._account.sign_transaction(tx).raw_transaction)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address})"


# ── Signed order ────────────────────────────────────────────────────


@dataclass(frozen=True)
class SignedOrder:
    """An order together with its EIP-712 hash and signature."""

    order: Order
    order_hash: str
    signature: str

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature.removeprefix("0x"))

    @property
    def r(self) -> bytes:
        return self.signature_bytes[:32]

    @property
    def vs(self) -> bytes:
        """EIP-2098 compact ``vs``: parity bit packed into the top of ``s``."""
        sig = self.signature_bytes
        s = int.from_bytes(sig[32:64], "big")
        v = sig[64]
        parity = v - 27 if v >= 27 else v
        return (s | (parity << 255)).to_bytes(32, "big")


class OrderSigner:
    """Signs orders through a protocol adapter and verifies them locally.

    Parameters
    ----------
    adapter:
        Protocol adapter providing ``typed_data(order)`` and the pure
        ``hash_order(order)`` (typed as Any to avoid circular imports).
    """

    def __init__(self, adapter: Any) -> None:
        self._adapter = adapter

    async def sign_order(self, order: Order, signer: Signer) -> SignedOrder:
        """Sign *order* with *signer* and verify the result.

        Raises
        ------
        SignatureMismatchError
            If the maker is not the signer, or the local hash / recovered
            address disagrees with what was signed.
        """
        if order.maker != to_checksum_address(signer.address):
            raise SignatureMismatchError(
                "Order maker is not the signing account",
                expected=order.maker,
                actual=signer.address,
            )

        typed = self._adapter.typed_data(order)
        expected_digest = self._adapter.hash_order(order)
        signed_digest = typed_data_digest(typed)
        if signed_digest != expected_digest:
            raise SignatureMismatchError(
                "Typed-data encoding disagrees with the settlement hash",
                expected="0x" + expected_digest.hex(),
                actual="0x" + signed_digest.hex(),
            )

        loop = asyncio.get_running_loop()
        signature = await loop.run_in_executor(None, signer.sign_typed_data, typed)

        signed = self.verify(order, signature)
        logger.debug(
            "eip712_signer.signed",
            order_hash=signed.order_hash,
            maker=order.maker,
        )
        return signed

    def verify(self, order: Order, signature: bytes) -> SignedOrder:
        """Check *signature* against the recomputed hash and return a SignedOrder."""
        digest = self._adapter.hash_order(order)
        try:
            recovered = recover_signer(digest, signature)
        except Exception as exc:
            raise SignatureMismatchError(
                f"Signature does not recover: {exc}",
                expected=order.maker,
            ) from exc
        if recovered != order.maker:
            raise SignatureMismatchError(
                "Recovered signer differs from order maker",
                expected=order.maker,
                actual=recovered,
            )
        return SignedOrder(
            order=order,
            order_hash="0x" + digest.hex(),
            signature="0x" + bytes(signature).hex(),
        )
