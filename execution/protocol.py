"""Versioned settlement-protocol adapters.

One adapter per protocol version owns everything that differs between
versions: the EIP-712 domain and schema, the pure order hash, the ABI shape
of the order struct, and the fill call. The rest of the workflow only talks
to ``ProtocolAdapter``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from models.order import UINT256_MAX, Order
from web3_infra.abis import LOP_V4_ABI, LOP_V4_ORDER_TUPLE_TYPE
from web3_infra.eip712_signer import (
    EIP712_DOMAIN_FIELDS,
    EIP712Domain,
    SignedOrder,
    eip712_digest,
)

logger = structlog.get_logger("execution.protocol")

_ADDRESS_MAX = 2**160 - 1


@dataclass(frozen=True)
class FillCall:
    """Contract function, positional arguments and msg.value for a fill."""

    fn_name: str
    args: tuple[Any, ...]
    value: int = 0


class ProtocolAdapter(ABC):
    """Interface every settlement-protocol version implements.

    Implementations:
    - ``LimitOrderV4Adapter`` — 1inch Limit Order Protocol v4
    """

    version: str = ""

    @property
    @abstractmethod
    def settlement_address(self) -> str:
        """Checksummed settlement contract address."""

    @property
    @abstractmethod
    def abi(self) -> list[dict[str, Any]]:
        """ABI fragment of the settlement contract."""

    @property
    @abstractmethod
    def domain(self) -> EIP712Domain:
        """EIP-712 domain the settlement contract verifies against."""

    @abstractmethod
    def typed_data(self, order: Order) -> dict[str, Any]:
        """Full EIP-712 message (types, primaryType, domain, message)."""

    @abstractmethod
    def hash_order(self, order: Order) -> bytes:
        """Recompute the 32-byte digest the settlement contract computes."""

    @abstractmethod
    def encode_order(self, order: Order) -> bytes:
        """ABI-encode the order struct as the contract receives it."""

    @abstractmethod
    def decode_order(self, data: bytes) -> Order:
        """Inverse of ``encode_order``."""

    @abstractmethod
    def fill_call(self, signed: SignedOrder, amount: int | None = None) -> FillCall:
        """Arguments for filling *amount* (making units) of a signed order."""

    @abstractmethod
    def taking_amount_for(self, order: Order, making_amount: int) -> int:
        """Taking amount the contract charges for a fill of *making_amount*."""

    @abstractmethod
    async def remaining_making_amount(
        self, chain: Any, order: Order, order_hash: str
    ) -> int | None:
        """Making amount still fillable, or ``None`` when it cannot be read."""

    @abstractmethod
    async def contract_hash(self, chain: Any, order: Order) -> bytes | None:
        """Order hash as computed by the contract, or ``None`` on failure."""


class LimitOrderV4Adapter(ProtocolAdapter):
    """1inch Limit Order Protocol v4 (inside Aggregation Router v6).

    The signed schema carries addresses as ``address``; the on-chain struct
    carries the same values as ``uint256`` words. Both hash identically.
    """

    version = "v4"

    DOMAIN_NAME = "1inch Aggregation Router"
    DOMAIN_VERSION = "6"

    ORDER_FIELDS = [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "receiver", "type": "address"},
        {"name": "makerAsset", "type": "address"},
        {"name": "takerAsset", "type": "address"},
        {"name": "makingAmount", "type": "uint256"},
        {"name": "takingAmount", "type": "uint256"},
        {"name": "makerTraits", "type": "uint256"},
    ]

    ORDER_TYPE = (
        "Order(uint256 salt,address maker,address receiver,address makerAsset,"
        "address takerAsset,uint256 makingAmount,uint256 takingAmount,uint256 makerTraits)"
    )
    ORDER_TYPEHASH = keccak(text=ORDER_TYPE)

    # TakerTraits: bit 255 makes ``amount`` a making amount; low 185 bits
    # hold the threshold (max taking amount in that mode).
    MAKER_AMOUNT_FLAG = 1 << 255
    THRESHOLD_MASK = (1 << 185) - 1

    def __init__(self, chain_id: int, settlement_address: str) -> None:
        self._settlement_address = to_checksum_address(settlement_address)
        self._domain = EIP712Domain(
            name=self.DOMAIN_NAME,
            version=self.DOMAIN_VERSION,
            chain_id=chain_id,
            verifying_contract=self._settlement_address,
        )

    @property
    def settlement_address(self) -> str:
        return self._settlement_address

    @property
    def abi(self) -> list[dict[str, Any]]:
        return LOP_V4_ABI

    @property
    def domain(self) -> EIP712Domain:
        return self._domain

    # ── Hashing ──────────────────────────────────────────────────

    def typed_data(self, order: Order) -> dict[str, Any]:
        return {
            "types": {
                "EIP712Domain": EIP712_DOMAIN_FIELDS,
                "Order": self.ORDER_FIELDS,
            },
            "primaryType": "Order",
            "domain": self._domain.as_dict(),
            "message": order.to_message(),
        }

    def struct_hash(self, order: Order) -> bytes:
        return keccak(
            abi_encode(
                [
                    "bytes32",
                    "uint256",
                    "address",
                    "address",
                    "address",
                    "address",
                    "uint256",
                    "uint256",
                    "uint256",
                ],
                [
                    self.ORDER_TYPEHASH,
                    order.salt,
                    order.maker,
                    order.receiver,
                    order.maker_asset,
                    order.taker_asset,
                    order.making_amount,
                    order.taking_amount,
                    order.maker_traits,
                ],
            )
        )

    def hash_order(self, order: Order) -> bytes:
        return eip712_digest(self._domain, self.struct_hash(order))

    # ── ABI shape ────────────────────────────────────────────────

    @staticmethod
    def order_tuple(order: Order) -> tuple[int, ...]:
        """Order as the contract's struct of eight ``uint256`` words."""
        return (
            order.salt,
            int(order.maker, 16),
            int(order.receiver, 16),
            int(order.maker_asset, 16),
            int(order.taker_asset, 16),
            order.making_amount,
            order.taking_amount,
            order.maker_traits,
        )

    @staticmethod
    def order_from_tuple(values: tuple[int, ...] | list[int]) -> Order:
        if len(values) != 8:
            raise ValueError(f"order struct has 8 fields, got {len(values)}")

        def _address(word: int) -> str:
            if not 0 <= word <= _ADDRESS_MAX:
                raise ValueError(f"address word has bits above 160: {word:#x}")
            return to_checksum_address(f"0x{word:040x}")

        return Order(
            salt=values[0],
            maker=_address(values[1]),
            receiver=_address(values[2]),
            maker_asset=_address(values[3]),
            taker_asset=_address(values[4]),
            making_amount=values[5],
            taking_amount=values[6],
            maker_traits=values[7],
        )

    def encode_order(self, order: Order) -> bytes:
        return abi_encode([LOP_V4_ORDER_TUPLE_TYPE], [self.order_tuple(order)])

    def decode_order(self, data: bytes) -> Order:
        (values,) = abi_decode([LOP_V4_ORDER_TUPLE_TYPE], data)
        return self.order_from_tuple(values)

    # ── Fill ─────────────────────────────────────────────────────

    def taking_amount_for(self, order: Order, making_amount: int) -> int:
        """Proportional taking amount, rounded up as the contract does."""
        if making_amount == order.making_amount:
            return order.taking_amount
        return (
            making_amount * order.taking_amount + order.making_amount - 1
        ) // order.making_amount

    def fill_call(self, signed: SignedOrder, amount: int | None = None) -> FillCall:
        order = signed.order
        making = order.making_amount if amount is None else amount
        if not 0 < making <= order.making_amount:
            raise ValueError(
                f"fill amount must be in (0, {order.making_amount}], got {making}"
            )
        threshold = self.taking_amount_for(order, making)
        if threshold > self.THRESHOLD_MASK:
            raise ValueError("taking amount does not fit the taker-traits threshold")
        taker_traits = self.MAKER_AMOUNT_FLAG | threshold
        return FillCall(
            fn_name="fillOrder",
            args=(self.order_tuple(order), signed.r, signed.vs, making, taker_traits),
        )

    # ── Best-effort queries ──────────────────────────────────────

    async def remaining_making_amount(
        self, chain: Any, order: Order, order_hash: str
    ) -> int | None:
        traits = order.traits
        try:
            if traits.uses_bit_invalidator:
                slot = traits.nonce >> 8
                bit = 1 << (traits.nonce & 0xFF)
                invalidator = await chain.call(
                    self._settlement_address,
                    self.abi,
                    "bitInvalidatorForOrder",
                    order.maker,
                    slot,
                )
                return 0 if invalidator & bit else order.making_amount

            raw = await chain.call(
                self._settlement_address,
                self.abi,
                "rawRemainingInvalidatorForOrder",
                order.maker,
                bytes.fromhex(order_hash.removeprefix("0x")),
            )
        except Exception as exc:
            logger.warning(
                "protocol.remaining_query_failed",
                order_hash=order_hash,
                error=str(exc),
            )
            return None

        # Zero means the contract has never seen this hash
        if raw == 0:
            return order.making_amount
        return ~raw & UINT256_MAX

    async def contract_hash(self, chain: Any, order: Order) -> bytes | None:
        try:
            result = await chain.call(
                self._settlement_address,
                self.abi,
                "hashOrder",
                self.order_tuple(order),
            )
        except Exception as exc:
            logger.warning("protocol.hash_query_failed", error=str(exc))
            return None
        return bytes(result)


_ADAPTERS: dict[str, type[ProtocolAdapter]] = {
    LimitOrderV4Adapter.version: LimitOrderV4Adapter,
}


def get_adapter(version: str, chain_id: int, settlement_address: str) -> ProtocolAdapter:
    """Select the adapter for a protocol version string (``"v4"``).

    Raises
    ------
    ValueError
        If no adapter is registered for *version*.
    """
    key = version.lower()
    if not key.startswith("v"):
        key = f"v{key}"
    try:
        adapter_cls = _ADAPTERS[key]
    except KeyError:
        raise ValueError(
            f"Unsupported settlement protocol version {version!r}; "
            f"known: {sorted(_ADAPTERS)}"
        ) from None
    return adapter_cls(chain_id=chain_id, settlement_address=settlement_address)
