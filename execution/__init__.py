"""Limit order workflow — execution package."""

from .order_builder import OrderBuilder
from .preconditions import PreconditionChecker, PreconditionReport
from .protocol import FillCall, LimitOrderV4Adapter, ProtocolAdapter, get_adapter
from .router import FallbackRouter
from .settlement import SettlementSubmitter
from .workflow import OrderWorkflow, WorkflowRun

__all__ = [
    "FallbackRouter",
    "FillCall",
    "LimitOrderV4Adapter",
    "OrderBuilder",
    "OrderWorkflow",
    "PreconditionChecker",
    "PreconditionReport",
    "ProtocolAdapter",
    "SettlementSubmitter",
    "WorkflowRun",
    "get_adapter",
]
