"""Tests for execution/settlement.py — fillOrder submission."""

from __future__ import annotations

import dataclasses

import pytest
from eth_utils import keccak

from core.errors import (
    OrderNotFillableError,
    SettlementRevertedError,
    SignatureMismatchError,
)
from fakes import ONE_ETH, SETTLEMENT, USDC, USDC_2500, WETH
from models.order import UINT256_MAX
from web3_infra.eip712_signer import OrderSigner


async def _signed_order(adapter, builder, maker, **build_kwargs):
    order = builder.build(
        maker.address, None, WETH, USDC, ONE_ETH, USDC_2500, **build_kwargs
    )
    return await OrderSigner(adapter).sign_order(order, maker)


def _fund(chain, maker, taker, usdc: int = USDC_2500) -> None:
    chain.mint(WETH, maker.address, ONE_ETH)
    chain.allowances[(WETH, maker.address, SETTLEMENT)] = ONE_ETH
    chain.mint(USDC, taker.address, usdc)


class TestFill:

    @pytest.mark.asyncio
    async def test_full_fill(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker)

        fill = await submitter.fill(taker, signed)

        assert fill.order_hash == signed.order_hash
        assert fill.making_amount == ONE_ETH
        assert fill.taking_amount == USDC_2500
        assert fill.remaining_before == ONE_ETH
        assert fill.settlement.tx_hash.startswith("0x")
        assert fill.approval is not None
        assert chain.sent("fillOrder")[0]["to"] == SETTLEMENT

    @pytest.mark.asyncio
    async def test_second_fill_sees_remaining(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker)

        await submitter.fill(taker, signed, ONE_ETH // 2)
        second = await submitter.fill(taker, signed, ONE_ETH // 2)

        assert second.remaining_before == ONE_ETH // 2

    @pytest.mark.asyncio
    async def test_overfill_blocked_by_remaining(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker)
        digest = adapter.hash_order(signed.order)
        chain.remaining_invalidators[(maker.address, digest)] = ~(ONE_ETH // 10) & UINT256_MAX

        with pytest.raises(OrderNotFillableError) as exc_info:
            await submitter.fill(taker, signed, ONE_ETH // 2)

        assert exc_info.value.remaining == ONE_ETH // 10
        assert exc_info.value.requested == ONE_ETH // 2
        assert chain.sent("fillOrder") == []

    @pytest.mark.asyncio
    async def test_fillability_query_failure_does_not_block(
        self, submitter, adapter, builder, chain, maker, taker
    ) -> None:
        _fund(chain, maker, taker)
        chain.failing_queries = {"rawRemainingInvalidatorForOrder", "hashOrder"}
        signed = await _signed_order(adapter, builder, maker)

        fill = await submitter.fill(taker, signed)

        assert fill.remaining_before is None
        assert len(chain.sent("fillOrder")) == 1

    @pytest.mark.asyncio
    async def test_revert_reason_surfaced(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker, usdc=USDC_2500 - 1)
        signed = await _signed_order(adapter, builder, maker)

        with pytest.raises(SettlementRevertedError) as exc_info:
            await submitter.fill(taker, signed)

        assert exc_info.value.reason == "TransferFromTakerToMakerFailed()"
        assert exc_info.value.order_hash == signed.order_hash
        assert "TransferFromTakerToMakerFailed()" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_partial_fill_not_allowed(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker, allow_partial_fills=False)

        with pytest.raises(SettlementRevertedError, match="PartialFillNotAllowed"):
            await submitter.fill(taker, signed, ONE_ETH // 2)

    @pytest.mark.asyncio
    async def test_expired_order(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker, expires_in=60)
        chain.now += 61

        with pytest.raises(SettlementRevertedError, match="OrderExpired"):
            await submitter.fill(taker, signed)
        assert chain.sent("fillOrder") == []


class TestHashChecks:

    @pytest.mark.asyncio
    async def test_tampered_hash_rejected(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker)
        tampered = dataclasses.replace(signed, order_hash="0x" + "11" * 32)

        with pytest.raises(SignatureMismatchError, match="recomputed"):
            await submitter.fill(taker, tampered)
        assert chain.transactions == []

    @pytest.mark.asyncio
    async def test_tampered_order_rejected(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        signed = await _signed_order(adapter, builder, maker)
        changed = signed.order.model_copy(update={"taking_amount": 1})
        forged = dataclasses.replace(
            signed, order=changed, order_hash="0x" + adapter.hash_order(changed).hex()
        )

        with pytest.raises(SignatureMismatchError, match="Recovered signer"):
            await submitter.fill(taker, forged)
        assert chain.transactions == []

    @pytest.mark.asyncio
    async def test_contract_hash_mismatch(self, submitter, adapter, builder, chain, maker, taker) -> None:
        _fund(chain, maker, taker)
        chain.hash_override = keccak(b"other domain")
        signed = await _signed_order(adapter, builder, maker)

        with pytest.raises(SignatureMismatchError, match="different order hash"):
            await submitter.fill(taker, signed)
        assert chain.transactions == []
