"""Shared fixtures: offline signers, components wired to ``FakeChain``."""

from __future__ import annotations

import pytest

from execution.order_builder import OrderBuilder
from execution.preconditions import PreconditionChecker
from execution.protocol import LimitOrderV4Adapter
from execution.router import FallbackRouter
from execution.settlement import SettlementSubmitter
from execution.workflow import OrderWorkflow
from fakes import MAKER_KEY, NATIVE, ROUTER, SETTLEMENT, TAKER_KEY, WETH, FakeChain
from web3_infra.eip712_signer import LocalSigner


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def maker() -> LocalSigner:
    return LocalSigner.from_key(MAKER_KEY)


@pytest.fixture
def taker() -> LocalSigner:
    return LocalSigner.from_key(TAKER_KEY)


@pytest.fixture
def adapter() -> LimitOrderV4Adapter:
    return LimitOrderV4Adapter(chain_id=1, settlement_address=SETTLEMENT)


@pytest.fixture
def chain(adapter: LimitOrderV4Adapter) -> FakeChain:
    return FakeChain(adapter)


@pytest.fixture
def clock(chain: FakeChain):
    return lambda: float(chain.now)


@pytest.fixture
def builder(clock) -> OrderBuilder:
    return OrderBuilder(NATIVE, WETH, clock=clock)


@pytest.fixture
def preconditions(chain: FakeChain) -> PreconditionChecker:
    return PreconditionChecker(chain, native_asset=NATIVE, wrapped_native=WETH)


@pytest.fixture
def router(chain: FakeChain, preconditions: PreconditionChecker, clock) -> FallbackRouter:
    return FallbackRouter(
        chain,
        preconditions,
        router_address=ROUTER,
        native_asset=NATIVE,
        wrapped_native=WETH,
        slippage_bps=500,
        deadline_seconds=1200,
        clock=clock,
    )


@pytest.fixture
def submitter(chain: FakeChain, adapter: LimitOrderV4Adapter, preconditions: PreconditionChecker, clock) -> SettlementSubmitter:
    return SettlementSubmitter(chain, adapter, preconditions, clock=clock)


@pytest.fixture
def workflow(
    adapter: LimitOrderV4Adapter,
    preconditions: PreconditionChecker,
    builder: OrderBuilder,
    submitter: SettlementSubmitter,
    router: FallbackRouter,
) -> OrderWorkflow:
    return OrderWorkflow(
        adapter=adapter,
        preconditions=preconditions,
        builder=builder,
        settlement=submitter,
        router=router,
        fallback_enabled=True,
        order_expiry_s=3600,
    )
