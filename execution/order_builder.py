"""OrderBuilder — assembles fresh limit orders.

Each call produces a new salt: the millisecond timestamp in the high bits
and 64 random bits below it, so two otherwise identical orders never share
a hash.
"""

from __future__ import annotations

import secrets
import time
from typing import Callable

import structlog
from eth_utils import to_checksum_address

from models.order import UINT40_MAX, MakerTraits, Order, OrderRequest

logger = structlog.get_logger("execution.order_builder")

_SALT_RANDOM_BITS = 64
_SALT_TIME_MASK = (1 << (256 - _SALT_RANDOM_BITS)) - 1


class OrderBuilder:
    """Builds ``Order`` structs with one fixed traits layout.

    Parameters
    ----------
    native_asset:
        Sentinel address that denotes the chain's native asset.
    wrapped_native:
        ERC-20 wrapper the native sentinel is replaced with in the order,
        since the settlement contract only moves ERC-20 maker assets.
    clock:
        Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        native_asset: str,
        wrapped_native: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._native = to_checksum_address(native_asset)
        self._wrapped = to_checksum_address(wrapped_native)
        self._clock = clock

    def order_asset(self, asset: str) -> str:
        """Asset address as it appears in the order struct."""
        checksum = to_checksum_address(asset)
        return self._wrapped if checksum == self._native else checksum

    def new_salt(self) -> int:
        ms = int(self._clock() * 1000) & _SALT_TIME_MASK
        return (ms << _SALT_RANDOM_BITS) | secrets.randbits(_SALT_RANDOM_BITS)

    def build(
        self,
        maker: str,
        receiver: str | None,
        offered_asset: str,
        requested_asset: str,
        offered_amount: int,
        requested_amount: int,
        allow_partial_fills: bool = True,
        allow_multiple_fills: bool = True,
        expires_in: int | None = None,
        nonce: int | None = None,
    ) -> Order:
        """Build an order with a fresh salt and encoded maker traits.

        Raises
        ------
        ValueError
            If the assets are the same after native wrapping, or an amount
            is not a positive integer.
        """
        maker_asset = self.order_asset(offered_asset)
        taker_asset = self.order_asset(requested_asset)
        if maker_asset == taker_asset:
            raise ValueError(f"offered and requested asset are both {maker_asset}")

        expiration = 0
        if expires_in is not None:
            if expires_in <= 0:
                raise ValueError(f"expires_in must be > 0, got {expires_in}")
            expiration = int(self._clock()) + expires_in

        uses_bit_invalidator = not (allow_partial_fills and allow_multiple_fills)
        if nonce is None:
            nonce = secrets.randbits(40) if uses_bit_invalidator else 0
        elif not 0 <= nonce <= UINT40_MAX:
            raise ValueError(f"nonce must fit in 40 bits, got {nonce}")

        traits = MakerTraits(
            allow_partial_fills=allow_partial_fills,
            allow_multiple_fills=allow_multiple_fills,
            expiration=expiration,
            nonce=nonce,
        )

        order = Order(
            salt=self.new_salt(),
            maker=maker,
            receiver=receiver or maker,
            maker_asset=maker_asset,
            taker_asset=taker_asset,
            making_amount=offered_amount,
            taking_amount=requested_amount,
            maker_traits=traits.encode(),
        )
        logger.debug(
            "order_builder.built",
            maker=order.maker,
            maker_asset=order.maker_asset,
            taker_asset=order.taker_asset,
            making_amount=order.making_amount,
            taking_amount=order.taking_amount,
            expiration=expiration,
        )
        return order

    def from_request(
        self,
        maker: str,
        request: OrderRequest,
        taking_amount: int,
        default_expires_in: int | None = None,
    ) -> Order:
        return self.build(
            maker=maker,
            receiver=request.receiver,
            offered_asset=request.maker_asset,
            requested_asset=request.taker_asset,
            offered_amount=request.making_amount,
            requested_amount=taking_amount,
            allow_partial_fills=request.allow_partial_fills,
            allow_multiple_fills=request.allow_multiple_fills,
            expires_in=request.expires_in or default_expires_in,
        )
