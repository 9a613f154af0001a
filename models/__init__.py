"""Limit order workflow — models package."""

from .order import MakerTraits, Order, OrderRequest
from .settlement import (
    ExecutionPath,
    FillExecution,
    SettlementResult,
    SwapExecution,
    TxStatus,
    WorkflowResult,
    WorkflowState,
)

__all__ = [
    "ExecutionPath",
    "FillExecution",
    "MakerTraits",
    "Order",
    "OrderRequest",
    "SettlementResult",
    "SwapExecution",
    "TxStatus",
    "WorkflowResult",
    "WorkflowState",
]
