"""Tests for models/ — MakerTraits, Order, OrderRequest, settlement types."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from fakes import MAKER_KEY, USDC, WETH
from models.order import (
    ALLOW_MULTIPLE_FILLS_FLAG,
    NO_PARTIAL_FILLS_FLAG,
    UINT40_MAX,
    UINT80_MAX,
    MakerTraits,
    Order,
    OrderRequest,
)
from models.settlement import (
    ExecutionPath,
    SettlementResult,
    TxStatus,
    WorkflowResult,
    WorkflowState,
)

MAKER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"

uint40 = st.integers(min_value=0, max_value=UINT40_MAX)


def _order(**overrides) -> Order:
    fields = dict(
        salt=1,
        maker=MAKER,
        receiver=MAKER,
        maker_asset=WETH,
        taker_asset=USDC,
        making_amount=10**18,
        taking_amount=2500 * 10**6,
        maker_traits=0,
    )
    fields.update(overrides)
    return Order(**fields)


class TestMakerTraits:
    """Tests for the v4 makerTraits layout."""

    def test_partial_and_multiple_sets_only_bit_254(self) -> None:
        encoded = MakerTraits(allow_partial_fills=True, allow_multiple_fills=True).encode()
        assert encoded == ALLOW_MULTIPLE_FILLS_FLAG

    def test_no_partial_sets_bit_255(self) -> None:
        encoded = MakerTraits(allow_partial_fills=False, allow_multiple_fills=False).encode()
        assert encoded == NO_PARTIAL_FILLS_FLAG

    def test_expiration_offset(self) -> None:
        encoded = MakerTraits(allow_multiple_fills=False, expiration=1_700_000_000).encode()
        assert (encoded >> 80) & UINT40_MAX == 1_700_000_000

    def test_nonce_and_series_offsets(self) -> None:
        encoded = MakerTraits(nonce=7, series=3).encode()
        assert (encoded >> 120) & UINT40_MAX == 7
        assert (encoded >> 160) & UINT40_MAX == 3

    def test_uses_bit_invalidator(self) -> None:
        assert not MakerTraits().uses_bit_invalidator
        assert MakerTraits(allow_multiple_fills=False).uses_bit_invalidator
        assert MakerTraits(allow_partial_fills=False).uses_bit_invalidator

    def test_expiry(self) -> None:
        traits = MakerTraits(expiration=100)
        assert not traits.is_expired(99)
        assert traits.is_expired(100)
        assert not MakerTraits().is_expired(10**12)

    def test_field_overflow_rejected(self) -> None:
        with pytest.raises(ValueError, match="40 bits"):
            MakerTraits(expiration=UINT40_MAX + 1)
        with pytest.raises(ValueError, match="80 bits"):
            MakerTraits(allowed_sender=UINT80_MAX + 1)

    @given(
        partial=st.booleans(),
        multiple=st.booleans(),
        expiration=uint40,
        nonce=uint40,
        series=uint40,
        sender=st.integers(min_value=0, max_value=UINT80_MAX),
    )
    @settings(max_examples=200)
    def test_encode_decode_round_trip(self, partial, multiple, expiration, nonce, series, sender) -> None:
        traits = MakerTraits(
            allow_partial_fills=partial,
            allow_multiple_fills=multiple,
            expiration=expiration,
            nonce=nonce,
            series=series,
            allowed_sender=sender,
        )
        assert MakerTraits.decode(traits.encode()) == traits


class TestOrder:
    """Tests for the Order model."""

    def test_addresses_checksummed(self) -> None:
        order = _order()
        assert order.maker == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
        assert order.to_message()["maker"] == order.maker

    def test_message_field_order(self) -> None:
        assert list(_order().to_message()) == [
            "salt",
            "maker",
            "receiver",
            "makerAsset",
            "takerAsset",
            "makingAmount",
            "takingAmount",
            "makerTraits",
        ]

    def test_zero_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _order(making_amount=0)
        with pytest.raises(ValidationError):
            _order(taking_amount=0)

    def test_float_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _order(making_amount=1e18)

    def test_invalid_address_rejected(self) -> None:
        with pytest.raises(ValidationError, match="invalid address"):
            _order(maker="0x1234")

    def test_frozen(self) -> None:
        order = _order()
        with pytest.raises(ValidationError):
            order.salt = 2

    def test_traits_property(self) -> None:
        order = _order(maker_traits=ALLOW_MULTIPLE_FILLS_FLAG)
        assert order.traits.allow_multiple_fills
        assert order.traits.allow_partial_fills


class TestOrderRequest:
    """Tests for OrderRequest validation."""

    def test_taking_amount_optional(self) -> None:
        req = OrderRequest(maker_asset=WETH, taker_asset=USDC, making_amount=10**18)
        assert req.taking_amount is None
        assert req.allow_partial_fills and req.allow_multiple_fills

    def test_fill_amount_cannot_exceed_making(self) -> None:
        with pytest.raises(ValidationError, match="fill_amount cannot exceed"):
            OrderRequest(
                maker_asset=WETH,
                taker_asset=USDC,
                making_amount=100,
                fill_amount=101,
            )

    def test_receiver_checksummed(self) -> None:
        req = OrderRequest(
            maker_asset=WETH, taker_asset=USDC, making_amount=1, receiver=MAKER
        )
        assert req.receiver == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class TestSettlementTypes:
    """Tests for SettlementResult and WorkflowResult."""

    def test_settlement_result_defaults(self) -> None:
        result = SettlementResult(tx_hash="0xabc", block_number=1, gas_used=21_000)
        assert result.status == TxStatus.CONFIRMED
        assert result.succeeded
        assert result.error is None

    def test_reverted_not_succeeded(self) -> None:
        result = SettlementResult(
            tx_hash="0xabc", block_number=1, gas_used=21_000, status=TxStatus.REVERTED
        )
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_workflow_result_summary(self, adapter) -> None:
        from web3_infra.eip712_signer import LocalSigner, OrderSigner

        signer = LocalSigner.from_key(MAKER_KEY)
        order = _order()
        signed = await OrderSigner(adapter).sign_order(order, signer)
        result = WorkflowResult(
            path=ExecutionPath.SIGNED_ORDER,
            order=order,
            signed_order=signed,
            settlement=SettlementResult(tx_hash="0xabc", block_number=5, gas_used=1),
            state_history=[WorkflowState.CHECKING_PRECONDITIONS, WorkflowState.SUCCEEDED],
        )
        summary = result.summary()
        assert summary["path"] == "SIGNED_ORDER"
        assert summary["order_hash"] == signed.order_hash
        assert summary["making_amount"] == "1000000000000000000"
        assert summary["states"] == ["CHECKING_PRECONDITIONS", "SUCCEEDED"]
        assert "settlement_error" not in summary
