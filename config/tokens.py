"""Token registry for Ethereum mainnet and base-unit conversion helpers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, localcontext

from config.settings import settings

_UINT256_MAX = 2**256 - 1
# uint256 has 78 digits; the rest covers fractional input beyond the token's decimals
_PRECISION = 120


@dataclass(frozen=True)
class Token:
    """An asset the workflow can trade."""

    symbol: str
    address: str
    decimals: int
    name: str

    @property
    def is_native(self) -> bool:
        return self.address.lower() == settings.NATIVE_ASSET_ADDRESS.lower()


TOKENS: dict[str, Token] = {
    # Sentinel address used by 1inch for the native chain asset
    "ETH": Token("ETH", settings.NATIVE_ASSET_ADDRESS, 18, "Ethereum"),
    "WETH": Token("WETH", settings.WETH_ADDRESS, 18, "Wrapped Ether"),
    "USDC": Token("USDC", settings.USDC_ADDRESS, 6, "USD Coin"),
}


def get_token(symbol: str) -> Token:
    """Look up a token by symbol (case-insensitive).

    Raises
    ------
    KeyError
        If the symbol is not registered.
    """
    try:
        return TOKENS[symbol.upper()]
    except KeyError:
        raise KeyError(f"Unknown token symbol: {symbol}") from None


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount (``Decimal("1.5")``) to integer base units.

    Digits beyond the token's precision are truncated, never rounded up.

    Raises
    ------
    ValueError
        If the result does not fit in a uint256.
    """
    if not isinstance(amount, Decimal):
        raise TypeError(f"amount must be Decimal, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"amount must be >= 0, got {amount}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        ctx.rounding = ROUND_DOWN
        scaled = int(amount.scaleb(decimals).to_integral_value())
    if scaled > _UINT256_MAX:
        raise ValueError(f"{amount} with {decimals} decimals exceeds uint256")
    return scaled


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units back to a human ``Decimal`` amount."""
    if not isinstance(raw, int):
        raise TypeError(f"raw must be int, got {type(raw).__name__}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(raw).scaleb(-decimals)
