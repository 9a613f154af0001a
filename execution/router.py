"""FallbackRouter — guaranteed-execution swap through a Uniswap V2 router.

Quotes with ``getAmountsOut``, accepts at most ``slippage_bps`` less than
the quote, and passes the deadline to the chain so a stale swap reverts on
its own.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import structlog
from eth_utils import to_checksum_address

from core.errors import InsufficientBalanceError
from execution.preconditions import PreconditionChecker
from models.settlement import SwapExecution
from web3_infra.abis import UNISWAP_V2_ROUTER_ABI
from web3_infra.eip712_signer import Signer

logger = structlog.get_logger("execution.router")

_BPS = 10_000


class FallbackRouter:
    """Swaps through the router when the signed-order fill fails."""

    def __init__(
        self,
        chain: Any,  # ChainClient
        preconditions: PreconditionChecker,
        router_address: str,
        native_asset: str,
        wrapped_native: str,
        slippage_bps: int = 500,
        deadline_seconds: int = 1200,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not 0 <= slippage_bps < _BPS:
            raise ValueError(f"slippage_bps must be in [0, {_BPS}), got {slippage_bps}")
        if deadline_seconds <= 0:
            raise ValueError(f"deadline_seconds must be > 0, got {deadline_seconds}")
        self._chain = chain
        self._preconditions = preconditions
        self._router = to_checksum_address(router_address)
        self._native = to_checksum_address(native_asset)
        self._wrapped = to_checksum_address(wrapped_native)
        self._slippage_bps = slippage_bps
        self._deadline_seconds = deadline_seconds
        self._clock = clock

    @property
    def address(self) -> str:
        return self._router

    def path_for(self, asset_in: str, asset_out: str) -> list[str]:
        """Direct two-hop path; the native sentinel routes as the wrapped token."""
        path = [
            self._wrapped if to_checksum_address(a) == self._native else to_checksum_address(a)
            for a in (asset_in, asset_out)
        ]
        if path[0] == path[1]:
            raise ValueError(f"cannot route {path[0]} to itself")
        return path

    async def quote(self, amount_in: int, asset_in: str, asset_out: str) -> int:
        """Expected output for *amount_in* according to the router."""
        if amount_in <= 0:
            raise ValueError(f"amount_in must be > 0, got {amount_in}")
        amounts = await self._chain.call(
            self._router,
            UNISWAP_V2_ROUTER_ABI,
            "getAmountsOut",
            amount_in,
            self.path_for(asset_in, asset_out),
        )
        return int(amounts[-1])

    def min_amount_out(self, expected: int) -> int:
        return expected * (_BPS - self._slippage_bps) // _BPS

    def deadline(self) -> int:
        return int(self._clock()) + self._deadline_seconds

    async def swap(
        self,
        signer: Signer,
        amount_in: int,
        asset_in: str,
        asset_out: str,
        recipient: str | None = None,
    ) -> SwapExecution:
        """Quote and swap *amount_in* of *asset_in* for *asset_out*.

        Raises
        ------
        InsufficientBalanceError
            If *signer* holds less than *amount_in*.
        TransactionRevertedError
            If the swap reverts (slippage, deadline, liquidity).
        """
        account = to_checksum_address(signer.address)
        to = to_checksum_address(recipient or account)
        path = self.path_for(asset_in, asset_out)

        balance = await self._preconditions.balance_of(account, asset_in)
        if balance < amount_in:
            raise InsufficientBalanceError(account, to_checksum_address(asset_in), amount_in, balance)

        expected = await self.quote(amount_in, asset_in, asset_out)
        if expected <= 0:
            raise ValueError(f"router quoted zero output for {amount_in} via {path}")
        min_out = self.min_amount_out(expected)
        deadline = self.deadline()

        approval = None
        if self._preconditions.is_native(asset_in):
            result = await self._chain.transact(
                signer,
                self._router,
                UNISWAP_V2_ROUTER_ABI,
                "swapExactETHForTokens",
                min_out,
                path,
                to,
                deadline,
                value=amount_in,
            )
        else:
            approval = await self._preconditions.ensure_allowance(
                signer, asset_in, amount_in, self._router
            )
            result = await self._chain.transact(
                signer,
                self._router,
                UNISWAP_V2_ROUTER_ABI,
                "swapExactTokensForTokens",
                amount_in,
                min_out,
                path,
                to,
                deadline,
            )

        logger.info(
            "router.swapped",
            tx_hash=result.tx_hash,
            amount_in=amount_in,
            expected_out=expected,
            min_out=min_out,
            path=path,
        )
        return SwapExecution(
            path=tuple(path),
            amount_in=amount_in,
            expected_amount_out=expected,
            min_amount_out=min_out,
            deadline=deadline,
            settlement=result,
            approval=approval,
        )
