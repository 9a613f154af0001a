"""Workflow error taxonomy.

Every terminal error carries enough structured detail (amounts, revert
text) for the caller to render a specific message. The orchestrator stamps
``failed_state`` with the lifecycle state the error ended the run in.
"""

from __future__ import annotations

from models.settlement import WorkflowState


class WorkflowError(Exception):
    """Base class for errors that terminate an order workflow."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.failed_state: WorkflowState | None = None


class InsufficientBalanceError(WorkflowError):
    """Account holds less of an asset than the step requires."""

    def __init__(self, account: str, asset: str, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient balance of {asset} for {account}: "
            f"required {required}, available {available}"
        )
        self.account = account
        self.asset = asset
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class InsufficientAllowanceError(WorkflowError):
    """Allowance still short after the approval was mined."""

    def __init__(
        self,
        owner: str,
        asset: str,
        spender: str,
        required: int,
        allowance: int,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(
            f"Allowance of {asset} from {owner} to {spender} is {allowance}, "
            f"required {required}"
        )
        self.owner = owner
        self.asset = asset
        self.spender = spender
        self.required = required
        self.allowance = allowance
        self.tx_hash = tx_hash


class SignatureMismatchError(WorkflowError):
    """Local hash or signer recovery disagrees with what was signed."""

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class SettlementRevertedError(WorkflowError):
    """The settlement contract rejected the fill."""

    def __init__(
        self,
        reason: str,
        order_hash: str | None = None,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(f"Settlement reverted: {reason}")
        self.reason = reason
        self.order_hash = order_hash
        self.tx_hash = tx_hash


class OrderNotFillableError(SettlementRevertedError):
    """The contract reports less remaining than the requested fill."""

    def __init__(self, order_hash: str, remaining: int, requested: int) -> None:
        super().__init__(
            f"order not fillable: remaining {remaining}, requested {requested}",
            order_hash=order_hash,
        )
        self.remaining = remaining
        self.requested = requested


class FallbackFailedError(WorkflowError):
    """Both the signed-order fill and the router fallback failed."""

    def __init__(self, settlement_error: Exception, fallback_error: Exception) -> None:
        super().__init__(
            f"Settlement failed ({settlement_error}); "
            f"fallback failed ({fallback_error})"
        )
        self.settlement_error = settlement_error
        self.fallback_error = fallback_error


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass
