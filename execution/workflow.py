"""OrderWorkflow — the order lifecycle state machine.

    CHECKING_PRECONDITIONS → BUILDING_ORDER → SIGNING → SETTLING
        → SUCCEEDED
        → FALLING_BACK → SUCCEEDED | FAILED
        → FAILED

Every step is awaited in sequence and attempted once. A failed fill falls
back to the router only when fallback is enabled; the fill's error is kept
on the result (or on ``FallbackFailedError``) rather than replaced. A fill
that was broadcast but never confirmed fails the run without a fallback.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog

from config.settings import Settings, settings as default_settings
from core.errors import (
    FallbackFailedError,
    InvalidTransitionError,
    SignatureMismatchError,
    WorkflowError,
)
from execution.order_builder import OrderBuilder
from execution.preconditions import PreconditionChecker
from execution.protocol import ProtocolAdapter, get_adapter
from execution.router import FallbackRouter
from execution.settlement import SettlementSubmitter
from models.order import Order, OrderRequest
from models.settlement import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ExecutionPath,
    SettlementResult,
    WorkflowResult,
    WorkflowState,
)
from web3_infra.chain_client import (
    ChainClient,
    ChainClientConfig,
    TransactionError,
    TransactionRevertedError,
)
from web3_infra.eip712_signer import OrderSigner, SignedOrder, Signer

logger = structlog.get_logger("execution.workflow")


@dataclass
class WorkflowRun:
    """Mutable state of one workflow invocation."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: WorkflowState = WorkflowState.CHECKING_PRECONDITIONS
    state_history: list[tuple[WorkflowState, float]] = field(default_factory=list)
    order: Order | None = None
    signed_order: SignedOrder | None = None
    approvals: list[SettlementResult] = field(default_factory=list)
    error: Exception | None = None

    def __post_init__(self) -> None:
        if not self.state_history:
            self.state_history.append((self.state, time.monotonic()))

    @property
    def states(self) -> list[WorkflowState]:
        return [s for s, _ in self.state_history]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: WorkflowState) -> None:
        """Move to *new_state*.

        Raises
        ------
        InvalidTransitionError
            If the transition is not in ``VALID_TRANSITIONS``.
        """
        valid_next = VALID_TRANSITIONS.get(self.state, set())
        if new_state not in valid_next:
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {[s.value for s in valid_next]}"
            )
        old_state = self.state
        self.state = new_state
        self.state_history.append((new_state, time.monotonic()))
        logger.info(
            "workflow.transition",
            run_id=self.run_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )


class OrderWorkflow:
    """Drives one order from preconditions to settlement (or fallback).

    Usage::

        async with RPCManager.from_settings() as rpc:
            workflow = OrderWorkflow.from_settings(rpc)
            result = await workflow.run(signer, OrderRequest(...))
            print(result.summary())
    """

    def __init__(
        self,
        adapter: ProtocolAdapter,
        preconditions: PreconditionChecker,
        builder: OrderBuilder,
        settlement: SettlementSubmitter,
        router: FallbackRouter | None = None,
        fallback_enabled: bool = True,
        order_expiry_s: int | None = None,
    ) -> None:
        self._adapter = adapter
        self._preconditions = preconditions
        self._builder = builder
        self._signer = OrderSigner(adapter)
        self._settlement = settlement
        self._router = router
        self._fallback_enabled = fallback_enabled
        self._order_expiry_s = order_expiry_s
        self.last_run: WorkflowRun | None = None

    @classmethod
    def from_settings(
        cls,
        rpc_manager: Any,
        config: Settings | None = None,
        chain: Any = None,
    ) -> OrderWorkflow:
        """Wire every component from configuration.

        *chain* overrides the ``ChainClient`` built over *rpc_manager*.
        """
        cfg = config or default_settings
        if chain is None:
            chain = ChainClient(
                rpc_manager,
                ChainClientConfig(
                    chain_id=cfg.CHAIN_ID,
                    max_gas_price_gwei=cfg.MAX_GAS_PRICE_GWEI,
                    gas_price_multiplier=cfg.GAS_PRICE_MULTIPLIER,
                    gas_estimate_multiplier=cfg.GAS_ESTIMATE_MULTIPLIER,
                    tx_confirmation_timeout_s=cfg.TX_CONFIRMATION_TIMEOUT_S,
                ),
            )
        adapter = get_adapter(
            cfg.SETTLEMENT_PROTOCOL_VERSION,
            chain_id=cfg.CHAIN_ID,
            settlement_address=cfg.SETTLEMENT_ADDRESS,
        )
        preconditions = PreconditionChecker(
            chain,
            native_asset=cfg.NATIVE_ASSET_ADDRESS,
            wrapped_native=cfg.WETH_ADDRESS,
            approve_unlimited=cfg.APPROVE_UNLIMITED,
        )
        router = FallbackRouter(
            chain,
            preconditions,
            router_address=cfg.ROUTER_ADDRESS,
            native_asset=cfg.NATIVE_ASSET_ADDRESS,
            wrapped_native=cfg.WETH_ADDRESS,
            slippage_bps=cfg.FALLBACK_SLIPPAGE_BPS,
            deadline_seconds=cfg.FALLBACK_DEADLINE_SECONDS,
        )
        return cls(
            adapter=adapter,
            preconditions=preconditions,
            builder=OrderBuilder(cfg.NATIVE_ASSET_ADDRESS, cfg.WETH_ADDRESS),
            settlement=SettlementSubmitter(chain, adapter, preconditions),
            router=router,
            fallback_enabled=cfg.FALLBACK_ENABLED,
            order_expiry_s=cfg.ORDER_EXPIRY_SECONDS,
        )

    async def run(
        self,
        signer: Signer,
        request: OrderRequest,
        taker: Signer | None = None,
    ) -> WorkflowResult:
        """Execute the full lifecycle for *request*, signed by *signer*.

        *taker* fills the order; it defaults to *signer* (self-fill).

        Raises
        ------
        InsufficientBalanceError
            Maker balance below the offered amount; nothing is built.
        SignatureMismatchError
            Local hash or recovery check failed; nothing is submitted.
        SettlementRevertedError
            Fill reverted and fallback is disabled.
        FallbackFailedError
            Fill and router fallback both failed.
        TransactionError
            Fill broadcast but unconfirmed; ``tx_hash`` identifies it.
        """
        run = WorkflowRun()
        self.last_run = run
        log = logger.bind(run_id=run.run_id, maker=signer.address)
        log.info(
            "workflow.started",
            maker_asset=request.maker_asset,
            taker_asset=request.taker_asset,
            making_amount=request.making_amount,
        )

        try:
            report = await self._preconditions.ensure_maker_funds(
                signer,
                request.maker_asset,
                request.making_amount,
                self._adapter.settlement_address,
            )
            run.approvals.extend(r for r in (report.wrap, report.approval) if r is not None)

            run.transition(WorkflowState.BUILDING_ORDER)
            taking_amount = request.taking_amount
            if taking_amount is None:
                taking_amount = await self._quote_taking_amount(request)
            order = self._builder.from_request(
                signer.address, request, taking_amount, self._order_expiry_s
            )
            run.order = order

            run.transition(WorkflowState.SIGNING)
            signed = await self._signer.sign_order(order, signer)
            run.signed_order = signed

            run.transition(WorkflowState.SETTLING)
        except Exception as exc:
            self._fail(run, exc)
            raise

        try:
            fill = await self._settlement.fill(taker or signer, signed, request.fill_amount)
        except SignatureMismatchError as exc:
            self._fail(run, exc)
            raise
        except Exception as settle_exc:
            if _fill_may_be_pending(settle_exc):
                # Broadcast but unconfirmed: a router swap could trade twice
                log.error(
                    "workflow.fill_unconfirmed",
                    order_hash=signed.order_hash,
                    tx_hash=settle_exc.tx_hash,
                )
                self._fail(run, settle_exc)
                raise
            if not self._fallback_enabled or self._router is None:
                self._fail(run, settle_exc)
                raise
            return await self._fall_back(run, signer, signed, request, settle_exc)

        if fill.approval is not None:
            run.approvals.append(fill.approval)
        run.transition(WorkflowState.SUCCEEDED)
        log.info(
            "workflow.succeeded",
            path=ExecutionPath.SIGNED_ORDER.value,
            order_hash=signed.order_hash,
            tx_hash=fill.settlement.tx_hash,
        )
        return WorkflowResult(
            path=ExecutionPath.SIGNED_ORDER,
            order=order,
            signed_order=signed,
            settlement=fill.settlement,
            fill=fill,
            approvals=list(run.approvals),
            state_history=run.states,
        )

    async def _fall_back(
        self,
        run: WorkflowRun,
        signer: Signer,
        signed: SignedOrder,
        request: OrderRequest,
        settle_exc: Exception,
    ) -> WorkflowResult:
        if self._router is None:
            raise RuntimeError("fallback requested without a router")
        order = signed.order
        run.transition(WorkflowState.FALLING_BACK)
        logger.warning(
            "workflow.falling_back",
            run_id=run.run_id,
            order_hash=signed.order_hash,
            settlement_error=str(settle_exc),
        )

        try:
            swap = await self._router.swap(
                signer,
                amount_in=request.fill_amount or order.making_amount,
                asset_in=order.maker_asset,
                asset_out=order.taker_asset,
                recipient=order.receiver,
            )
        except Exception as fallback_exc:
            error = FallbackFailedError(settle_exc, fallback_exc)
            self._fail(run, error)
            raise error from fallback_exc

        if swap.approval is not None:
            run.approvals.append(swap.approval)
        run.transition(WorkflowState.SUCCEEDED)
        logger.info(
            "workflow.succeeded",
            run_id=run.run_id,
            path=ExecutionPath.ROUTER_FALLBACK.value,
            tx_hash=swap.settlement.tx_hash,
            settlement_error=str(settle_exc),
        )
        return WorkflowResult(
            path=ExecutionPath.ROUTER_FALLBACK,
            order=order,
            signed_order=signed,
            settlement=swap.settlement,
            swap=swap,
            settlement_error=str(settle_exc),
            approvals=list(run.approvals),
            state_history=run.states,
        )

    async def _quote_taking_amount(self, request: OrderRequest) -> int:
        """Price the order from the router quote when the caller gave no rate."""
        if self._router is None:
            raise ValueError("taking_amount is required when no router is configured")
        quoted = await self._router.quote(
            request.making_amount, request.maker_asset, request.taker_asset
        )
        if quoted <= 0:
            raise ValueError("router quoted zero output; cannot price the order")
        logger.info(
            "workflow.priced_from_router",
            making_amount=request.making_amount,
            taking_amount=quoted,
        )
        return quoted

    @staticmethod
    def _fail(run: WorkflowRun, exc: Exception) -> None:
        if isinstance(exc, WorkflowError) and exc.failed_state is None:
            exc.failed_state = run.state
        run.error = exc
        logger.error(
            "workflow.failed",
            run_id=run.run_id,
            state=run.state.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if not run.is_terminal:
            run.transition(WorkflowState.FAILED)


def _fill_may_be_pending(exc: Exception) -> bool:
    """True when the fill left the node but no receipt was seen."""
    return (
        isinstance(exc, TransactionError)
        and not isinstance(exc, TransactionRevertedError)
        and exc.tx_hash is not None
    )
