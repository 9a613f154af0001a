"""Order — off-chain limit order for Limit Order Protocol v4.

Amounts are integers in the asset's smallest unit. Floats are rejected at
validation time (strict ints), so ``1e18`` can never sneak in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator

UINT256_MAX = 2**256 - 1
UINT40_MAX = 2**40 - 1
UINT80_MAX = 2**80 - 1

# ── MakerTraits bit layout (Limit Order Protocol v4) ────────────────
NO_PARTIAL_FILLS_FLAG = 1 << 255
ALLOW_MULTIPLE_FILLS_FLAG = 1 << 254
ALLOWED_SENDER_OFFSET = 0
EXPIRATION_OFFSET = 80
NONCE_OR_EPOCH_OFFSET = 120
SERIES_OFFSET = 160


def _checksum(value: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"invalid address: {value!r}")
    return to_checksum_address(value)


@dataclass(frozen=True)
class MakerTraits:
    """Decoded view of the bit-packed ``makerTraits`` word.

    Partial fills are allowed unless bit 255 is set; bit 254 allows
    multiple fills. Expiration, nonce and series are 40-bit fields; the
    allowed sender is the low 80 bits of an address (0 = anyone).
    """

    allow_partial_fills: bool = True
    allow_multiple_fills: bool = True
    expiration: int = 0
    nonce: int = 0
    series: int = 0
    allowed_sender: int = 0

    def __post_init__(self) -> None:
        for name in ("expiration", "nonce", "series"):
            value = getattr(self, name)
            if not 0 <= value <= UINT40_MAX:
                raise ValueError(f"{name} must fit in 40 bits, got {value}")
        if not 0 <= self.allowed_sender <= UINT80_MAX:
            raise ValueError(f"allowed_sender must fit in 80 bits, got {self.allowed_sender}")

    @property
    def uses_bit_invalidator(self) -> bool:
        """Orders that are not partial+multiple are invalidated by nonce bit."""
        return not (self.allow_partial_fills and self.allow_multiple_fills)

    def encode(self) -> int:
        traits = 0
        if not self.allow_partial_fills:
            traits |= NO_PARTIAL_FILLS_FLAG
        if self.allow_multiple_fills:
            traits |= ALLOW_MULTIPLE_FILLS_FLAG
        traits |= self.allowed_sender << ALLOWED_SENDER_OFFSET
        traits |= self.expiration << EXPIRATION_OFFSET
        traits |= self.nonce << NONCE_OR_EPOCH_OFFSET
        traits |= self.series << SERIES_OFFSET
        return traits

    @classmethod
    def decode(cls, value: int) -> MakerTraits:
        if not 0 <= value <= UINT256_MAX:
            raise ValueError(f"makerTraits out of uint256 range: {value}")
        return cls(
            allow_partial_fills=not (value & NO_PARTIAL_FILLS_FLAG),
            allow_multiple_fills=bool(value & ALLOW_MULTIPLE_FILLS_FLAG),
            expiration=(value >> EXPIRATION_OFFSET) & UINT40_MAX,
            nonce=(value >> NONCE_OR_EPOCH_OFFSET) & UINT40_MAX,
            series=(value >> SERIES_OFFSET) & UINT40_MAX,
            allowed_sender=(value >> ALLOWED_SENDER_OFFSET) & UINT80_MAX,
        )

    def is_expired(self, now: int) -> bool:
        return self.expiration != 0 and now >= self.expiration


class Order(BaseModel):
    """Signed-order payload. Field order matches the EIP-712 ``Order`` type."""

    model_config = ConfigDict(frozen=True)

    salt: int = Field(..., ge=0, le=UINT256_MAX, strict=True)
    maker: str
    receiver: str
    maker_asset: str = Field(..., description="Asset offered by the maker")
    taker_asset: str = Field(..., description="Asset requested in return")
    making_amount: int = Field(..., gt=0, le=UINT256_MAX, strict=True)
    taking_amount: int = Field(..., gt=0, le=UINT256_MAX, strict=True)
    maker_traits: int = Field(default=0, ge=0, le=UINT256_MAX, strict=True)

    @field_validator("maker", "receiver", "maker_asset", "taker_asset")
    @classmethod
    def checksum_address(cls, v: str) -> str:
        return _checksum(v)

    @property
    def traits(self) -> MakerTraits:
        return MakerTraits.decode(self.maker_traits)

    def to_message(self) -> dict[str, Any]:
        """Return the EIP-712 ``message`` dict (camelCase, declared order)."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "receiver": self.receiver,
            "makerAsset": self.maker_asset,
            "takerAsset": self.taker_asset,
            "makingAmount": self.making_amount,
            "takingAmount": self.taking_amount,
            "makerTraits": self.maker_traits,
        }


class OrderRequest(BaseModel):
    """What the caller wants to trade; the workflow turns it into an Order.

    ``taking_amount`` may be left empty, in which case the workflow prices
    the order from the fallback router's quote.
    """

    maker_asset: str
    taker_asset: str
    making_amount: int = Field(..., gt=0, le=UINT256_MAX, strict=True)
    taking_amount: Optional[int] = Field(default=None, gt=0, le=UINT256_MAX, strict=True)
    receiver: Optional[str] = None
    allow_partial_fills: bool = True
    allow_multiple_fills: bool = True
    expires_in: Optional[int] = Field(default=None, gt=0, description="Expiry in seconds from now")
    fill_amount: Optional[int] = Field(
        default=None, gt=0, le=UINT256_MAX, strict=True,
        description="Making amount to fill (defaults to the whole order)",
    )

    @field_validator("maker_asset", "taker_asset")
    @classmethod
    def checksum_asset(cls, v: str) -> str:
        return _checksum(v)

    @field_validator("receiver")
    @classmethod
    def checksum_receiver(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _checksum(v)

    @field_validator("fill_amount")
    @classmethod
    def fill_lte_making(cls, v: Optional[int], info) -> Optional[int]:
        """fill_amount cannot exceed making_amount."""
        making = info.data.get("making_amount")
        if v is not None and making is not None and v > making:
            raise ValueError("fill_amount cannot exceed making_amount")
        return v
