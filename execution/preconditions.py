"""PreconditionChecker — balance and allowance gate before any order work.

Balance shortfalls abort; they are never clamped. An allowance shortfall is
fixed with exactly one approval, which is awaited and then re-read.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable

import structlog
from eth_utils import to_checksum_address

from core.errors import InsufficientAllowanceError, InsufficientBalanceError
from models.order import UINT256_MAX
from models.settlement import SettlementResult
from web3_infra.abis import ERC20_ABI, WETH_ABI
from web3_infra.chain_client import TransactionError
from web3_infra.eip712_signer import Signer

logger = structlog.get_logger("execution.preconditions")


@dataclass(frozen=True)
class PreconditionReport:
    """Balance and allowance of one account for one asset and spender."""

    account: str
    asset: str
    spender: str
    required: int
    balance: int
    allowance: int
    approval: SettlementResult | None = None
    wrap: SettlementResult | None = None

    @property
    def has_balance(self) -> bool:
        return self.balance >= self.required

    @property
    def has_allowance(self) -> bool:
        return self.allowance >= self.required

    @property
    def ready(self) -> bool:
        return self.has_balance and self.has_allowance


class PreconditionChecker:
    """Reads balances/allowances and issues approvals through a ``ChainClient``.

    The native sentinel is read with ``eth_getBalance`` and has no
    allowance: it is never approved.
    """

    def __init__(
        self,
        chain: Any,  # ChainClient
        native_asset: str,
        wrapped_native: str,
        approve_unlimited: bool = False,
    ) -> None:
        self._chain = chain
        self._native = to_checksum_address(native_asset)
        self._wrapped = to_checksum_address(wrapped_native)
        self._approve_unlimited = approve_unlimited

    def is_native(self, asset: str) -> bool:
        return to_checksum_address(asset) == self._native

    # ── Reads ────────────────────────────────────────────────────

    async def balance_of(self, account: str, asset: str) -> int:
        if self.is_native(asset):
            return await self._chain.get_native_balance(account)
        return await self._chain.call(
            asset, ERC20_ABI, "balanceOf", to_checksum_address(account)
        )

    async def allowance_of(self, owner: str, asset: str, spender: str) -> int:
        if self.is_native(asset):
            return UINT256_MAX
        return await self._chain.call(
            asset,
            ERC20_ABI,
            "allowance",
            to_checksum_address(owner),
            to_checksum_address(spender),
        )

    async def check(self, account: str, asset: str, amount: int, spender: str) -> PreconditionReport:
        """Read-only snapshot; issues no transactions."""
        balance = await self.balance_of(account, asset)
        allowance = await self.allowance_of(account, asset, spender)
        return PreconditionReport(
            account=to_checksum_address(account),
            asset=to_checksum_address(asset),
            spender=to_checksum_address(spender),
            required=amount,
            balance=balance,
            allowance=allowance,
        )

    async def snapshot(self, account: str, assets: Iterable[str]) -> dict[str, int]:
        """Balance of *account* for each asset, keyed by checksummed address."""
        out: dict[str, int] = {}
        for asset in assets:
            out[to_checksum_address(asset)] = await self.balance_of(account, asset)
        return out

    # ── Writes ───────────────────────────────────────────────────

    async def ensure(
        self, signer: Signer, asset: str, amount: int, spender: str
    ) -> PreconditionReport:
        """Verify the balance, then approve *spender* once if the allowance is short.

        Raises
        ------
        InsufficientBalanceError
            If the balance is below *amount*. Nothing is sent.
        InsufficientAllowanceError
            If the allowance is still short after the approval was mined.
        """
        report = await self.check(signer.address, asset, amount, spender)
        if not report.has_balance:
            logger.warning(
                "preconditions.insufficient_balance",
                account=report.account,
                asset=report.asset,
                required=amount,
                available=report.balance,
            )
            raise InsufficientBalanceError(
                report.account, report.asset, amount, report.balance
            )

        approval = await self.ensure_allowance(
            signer, asset, amount, spender, current=report.allowance
        )
        if approval is None:
            return report
        allowance = await self.allowance_of(signer.address, asset, spender)
        return replace(report, allowance=allowance, approval=approval)

    async def ensure_maker_funds(
        self, signer: Signer, asset: str, amount: int, spender: str
    ) -> PreconditionReport:
        """``ensure`` for a maker asset, wrapping native funds when needed.

        An order cannot offer the native asset directly; it offers the
        wrapped token instead. Any wrapped-token shortfall is covered from
        the native balance with one ``deposit`` before the approval.
        """
        if not self.is_native(asset):
            return await self.ensure(signer, asset, amount, spender)

        account = to_checksum_address(signer.address)
        wrapped_balance = await self.balance_of(account, self._wrapped)
        wrap: SettlementResult | None = None
        if wrapped_balance < amount:
            shortfall = amount - wrapped_balance
            native_balance = await self.balance_of(account, self._native)
            if native_balance < shortfall:
                raise InsufficientBalanceError(
                    account, self._native, amount, wrapped_balance + native_balance
                )
            wrap = await self.wrap_native(signer, shortfall)

        report = await self.ensure(signer, self._wrapped, amount, spender)
        return replace(report, wrap=wrap)

    async def ensure_allowance(
        self,
        signer: Signer,
        asset: str,
        amount: int,
        spender: str,
        current: int | None = None,
    ) -> SettlementResult | None:
        """Approve *spender* for *amount* unless the allowance already covers it.

        Returns the approval's receipt, or ``None`` when none was needed.
        """
        if self.is_native(asset):
            return None

        owner = to_checksum_address(signer.address)
        if current is None:
            current = await self.allowance_of(owner, asset, spender)
        if current >= amount:
            return None

        approve_amount = UINT256_MAX if self._approve_unlimited else amount
        logger.info(
            "preconditions.approving",
            owner=owner,
            asset=to_checksum_address(asset),
            spender=to_checksum_address(spender),
            amount=approve_amount,
            current=current,
        )
        try:
            result = await self._chain.transact(
                signer,
                asset,
                ERC20_ABI,
                "approve",
                to_checksum_address(spender),
                approve_amount,
            )
        except TransactionError as exc:
            raise InsufficientAllowanceError(
                owner, asset, spender, amount, current, tx_hash=exc.tx_hash
            ) from exc

        updated = await self.allowance_of(owner, asset, spender)
        if updated < amount:
            raise InsufficientAllowanceError(
                owner, asset, spender, amount, updated, tx_hash=result.tx_hash
            )
        logger.info("preconditions.approved", tx_hash=result.tx_hash, allowance=updated)
        return result

    async def wrap_native(self, signer: Signer, amount: int) -> SettlementResult:
        """Deposit *amount* of the native asset into the wrapped token.

        Raises
        ------
        InsufficientBalanceError
            If the native balance is below *amount*.
        """
        account = to_checksum_address(signer.address)
        native_balance = await self.balance_of(account, self._native)
        if native_balance < amount:
            raise InsufficientBalanceError(account, self._native, amount, native_balance)

        result = await self._chain.transact(
            signer, self._wrapped, WETH_ABI, "deposit", value=amount
        )
        logger.info("preconditions.wrapped_native", amount=amount, tx_hash=result.tx_hash)
        return result
