"""SettlementSubmitter — fills a signed order on the settlement contract.

Before anything is sent the order hash is re-derived and the signature
re-verified; a disagreement aborts. Contract-side hash and remaining-amount
queries are best effort: when they fail the fill still goes ahead.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import structlog

from core.errors import (
    OrderNotFillableError,
    SettlementRevertedError,
    SignatureMismatchError,
)
from execution.preconditions import PreconditionChecker
from execution.protocol import ProtocolAdapter
from models.settlement import FillExecution
from web3_infra.chain_client import TransactionRevertedError
from web3_infra.eip712_signer import OrderSigner, SignedOrder, Signer

logger = structlog.get_logger("execution.settlement")


class SettlementSubmitter:
    """Submits ``fillOrder`` for a signed order on behalf of a taker."""

    def __init__(
        self,
        chain: Any,  # ChainClient
        adapter: ProtocolAdapter,
        preconditions: PreconditionChecker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._adapter = adapter
        self._preconditions = preconditions
        self._verifier = OrderSigner(adapter)
        self._clock = clock

    async def fill(
        self,
        taker: Signer,
        signed: SignedOrder,
        fill_amount: int | None = None,
    ) -> FillExecution:
        """Fill *fill_amount* (making units, default: whole order) of *signed*.

        Raises
        ------
        SignatureMismatchError
            If the recomputed or contract-side hash differs from the signed
            hash, or the signature does not recover to the maker.
        OrderNotFillableError
            If the contract reports less remaining than *fill_amount*.
        SettlementRevertedError
            If the fill reverts; ``reason`` holds the chain's revert text.
        """
        order = signed.order
        amount = order.making_amount if fill_amount is None else fill_amount
        if not 0 < amount <= order.making_amount:
            raise ValueError(
                f"fill amount must be in (0, {order.making_amount}], got {amount}"
            )

        local_hash = "0x" + self._adapter.hash_order(order).hex()
        if local_hash != signed.order_hash.lower():
            raise SignatureMismatchError(
                "Signed order hash differs from recomputed hash",
                expected=local_hash,
                actual=signed.order_hash,
            )
        self._verifier.verify(order, signed.signature_bytes)

        traits = order.traits
        if amount < order.making_amount and not traits.allow_partial_fills:
            raise SettlementRevertedError("PartialFillNotAllowed()", order_hash=local_hash)
        if traits.is_expired(int(self._clock())):
            raise SettlementRevertedError("OrderExpired()", order_hash=local_hash)

        onchain_hash = await self._adapter.contract_hash(self._chain, order)
        if onchain_hash is not None and "0x" + onchain_hash.hex() != local_hash:
            raise SignatureMismatchError(
                "Settlement contract computes a different order hash",
                expected="0x" + onchain_hash.hex(),
                actual=local_hash,
            )

        remaining = await self._adapter.remaining_making_amount(self._chain, order, local_hash)
        if remaining is not None and remaining < amount:
            raise OrderNotFillableError(local_hash, remaining, amount)

        taking = self._adapter.taking_amount_for(order, amount)
        approval = await self._preconditions.ensure_allowance(
            taker, order.taker_asset, taking, self._adapter.settlement_address
        )

        call = self._adapter.fill_call(signed, amount)
        logger.info(
            "settlement.fill_sending",
            order_hash=local_hash,
            taker=taker.address,
            making_amount=amount,
            taking_amount=taking,
            remaining=remaining,
        )
        try:
            result = await self._chain.transact(
                taker,
                self._adapter.settlement_address,
                self._adapter.abi,
                call.fn_name,
                *call.args,
                value=call.value,
            )
        except TransactionRevertedError as exc:
            logger.warning(
                "settlement.fill_reverted",
                order_hash=local_hash,
                reason=exc.reason,
                tx_hash=exc.tx_hash,
            )
            raise SettlementRevertedError(
                exc.reason, order_hash=local_hash, tx_hash=exc.tx_hash
            ) from exc

        logger.info(
            "settlement.fill_sent",
            order_hash=local_hash,
            tx_hash=result.tx_hash,
            block=result.block_number,
            gas_used=result.gas_used,
        )
        return FillExecution(
            order_hash=local_hash,
            making_amount=amount,
            taking_amount=taking,
            remaining_before=remaining,
            settlement=result,
            approval=approval,
        )
