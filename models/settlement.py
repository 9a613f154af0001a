"""Settlement results and workflow outcome types."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from models.order import Order

if TYPE_CHECKING:
    from web3_infra.eip712_signer import SignedOrder


class TxStatus(str, Enum):
    """Transaction outcome as read back from the receipt."""

    CONFIRMED = "CONFIRMED"
    REVERTED = "REVERTED"
    FAILED = "FAILED"


class ExecutionPath(str, Enum):
    """Which route produced the on-chain trade."""

    SIGNED_ORDER = "SIGNED_ORDER"
    ROUTER_FALLBACK = "ROUTER_FALLBACK"
    AGGREGATOR = "AGGREGATOR"


class WorkflowState(str, Enum):
    """Order lifecycle states."""

    CHECKING_PRECONDITIONS = "CHECKING_PRECONDITIONS"
    BUILDING_ORDER = "BUILDING_ORDER"
    SIGNING = "SIGNING"
    SETTLING = "SETTLING"
    FALLING_BACK = "FALLING_BACK"

    # Terminal
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Valid state transitions
VALID_TRANSITIONS: dict[WorkflowState, set[WorkflowState]] = {
    WorkflowState.CHECKING_PRECONDITIONS: {WorkflowState.BUILDING_ORDER, WorkflowState.FAILED},
    WorkflowState.BUILDING_ORDER: {WorkflowState.SIGNING, WorkflowState.FAILED},
    WorkflowState.SIGNING: {WorkflowState.SETTLING, WorkflowState.FAILED},
    WorkflowState.SETTLING: {
        WorkflowState.SUCCEEDED,
        WorkflowState.FALLING_BACK,
        WorkflowState.FAILED,
    },
    WorkflowState.FALLING_BACK: {WorkflowState.SUCCEEDED, WorkflowState.FAILED},
    # Terminal: no further transitions
    WorkflowState.SUCCEEDED: set(),
    WorkflowState.FAILED: set(),
}

TERMINAL_STATES = frozenset({WorkflowState.SUCCEEDED, WorkflowState.FAILED})


@dataclass(frozen=True)
class SettlementResult:
    """Receipt data for a mined transaction."""

    tx_hash: str
    block_number: int
    gas_used: int
    status: TxStatus = TxStatus.CONFIRMED
    effective_gas_price_gwei: Decimal = Decimal("0")
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TxStatus.CONFIRMED


@dataclass(frozen=True)
class FillExecution:
    """A signed order filled on the settlement contract."""

    order_hash: str
    making_amount: int
    taking_amount: int
    remaining_before: int | None
    settlement: SettlementResult
    approval: SettlementResult | None = None


@dataclass(frozen=True)
class SwapExecution:
    """A swap executed on the fallback router."""

    path: tuple[str, ...]
    amount_in: int
    expected_amount_out: int
    min_amount_out: int
    deadline: int
    settlement: SettlementResult
    approval: SettlementResult | None = None


@dataclass
class WorkflowResult:
    """Outcome of one workflow run.

    ``path`` tells the caller whether the reported trade went through the
    signed order or through the router fallback. When the fallback ran,
    ``settlement_error`` keeps the reason the signed-order fill failed.
    """

    path: ExecutionPath
    order: Order
    signed_order: SignedOrder
    settlement: SettlementResult
    fill: FillExecution | None = None
    swap: SwapExecution | None = None
    settlement_error: str | None = None
    approvals: list[SettlementResult] = field(default_factory=list)
    state_history: list[WorkflowState] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.path == ExecutionPath.ROUTER_FALLBACK

    def summary(self) -> dict[str, Any]:
        """Flat dict suitable for display or JSON output."""
        out: dict[str, Any] = {
            "path": self.path.value,
            "order_hash": self.signed_order.order_hash,
            "maker": self.order.maker,
            "maker_asset": self.order.maker_asset,
            "taker_asset": self.order.taker_asset,
            "making_amount": str(self.order.making_amount),
            "taking_amount": str(self.order.taking_amount),
            "tx_hash": self.settlement.tx_hash,
            "block_number": self.settlement.block_number,
            "gas_used": self.settlement.gas_used,
            "states": [s.value for s in self.state_history],
        }
        if self.settlement_error is not None:
            out["settlement_error"] = self.settlement_error
        if self.swap is not None:
            out["expected_amount_out"] = str(self.swap.expected_amount_out)
            out["min_amount_out"] = str(self.swap.min_amount_out)
        return out
