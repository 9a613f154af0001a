"""RPCManager — pooled Ethereum JSON-RPC access with failover.

Endpoints are ranked by health, then by how far their head lags the best
known block, then by latency. Transport failures (timeouts, connection
resets, HTTP 5xx) move on to the next endpoint. A revert or a rejected
transaction is an answer from the chain and is re-raised as is: every
honest node would give the same one.

When ``expected_chain_id`` is configured, endpoints serving another chain
are dropped from the pool at start-up.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import urlparse

import structlog
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.providers import AsyncHTTPProvider

logger = structlog.get_logger("web3_infra.rpc_manager")

T = TypeVar("T")


class EndpointStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"


_STATUS_RANK = {
    EndpointStatus.HEALTHY: 0,
    EndpointStatus.DEGRADED: 1,
    EndpointStatus.DOWN: 2,
}


def redact_url(url: str) -> str:
    """Scheme and host only; provider URLs usually embed an API key in the path."""
    parsed = urlparse(url)
    if not parsed.hostname:
        return url[:30] + "..."
    return f"{parsed.scheme}://{parsed.hostname}/***"


@dataclass
class EndpointHealth:
    """Rolling health record of one endpoint."""

    url: str
    status: EndpointStatus = EndpointStatus.HEALTHY
    failure_streak: int = 0
    requests: int = 0
    failures: int = 0
    latency_ms: float = 0.0
    head_block: int | None = None
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        if self.requests == 0:
            return 1.0
        return 1.0 - self.failures / self.requests

    def ok(self, latency_ms: float, smoothing: float) -> None:
        self.requests += 1
        self.failure_streak = 0
        self.status = EndpointStatus.HEALTHY
        self.last_error = None
        if self.latency_ms == 0.0:
            self.latency_ms = latency_ms
        else:
            self.latency_ms = smoothing * latency_ms + (1 - smoothing) * self.latency_ms

    def fail(self, error: str, degraded_after: int, down_after: int) -> None:
        self.requests += 1
        self.failures += 1
        self.failure_streak += 1
        self.last_error = error
        if self.failure_streak >= down_after:
            self.status = EndpointStatus.DOWN
        elif self.failure_streak >= degraded_after:
            self.status = EndpointStatus.DEGRADED

    def snapshot(self) -> dict[str, Any]:
        return {
            "url": redact_url(self.url),
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 1),
            "head_block": self.head_block,
            "failure_streak": self.failure_streak,
            "success_rate": round(self.success_rate, 3),
            "last_error": self.last_error,
        }


def _chain_answers() -> tuple[type[BaseException], ...]:
    # ValueError is how web3 surfaces JSON-RPC error objects (nonce too low,
    # insufficient funds for gas)
    return (ContractLogicError, TransactionNotFound, ValueError)


@dataclass
class RPCManagerConfig:
    request_timeout_s: float = 10.0
    health_check_interval_s: float = 30.0
    degraded_after: int = 2
    down_after: int = 5
    latency_smoothing: float = 0.3
    # Endpoints this many blocks behind the best head rank as degraded
    max_block_lag: int = 3
    expected_chain_id: int | None = None
    non_retryable: tuple[type[BaseException], ...] = field(default_factory=_chain_answers)


class RPCManager:
    """Pool of ``AsyncWeb3`` clients over one or more Ethereum endpoints.

    Usage::

        async with RPCManager.from_settings() as rpc:
            head = await rpc.execute(lambda w3: w3.eth.block_number)
    """

    def __init__(
        self,
        endpoints: list[str],
        config: RPCManagerConfig | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")

        self._config = config or RPCManagerConfig()
        self._endpoints = list(dict.fromkeys(endpoints))
        self._health: dict[str, EndpointHealth] = {
            url: EndpointHealth(url=url) for url in self._endpoints
        }
        self._clients: dict[str, AsyncWeb3] = {}
        self._probe_task: asyncio.Task[None] | None = None
        self._started = False

    @classmethod
    def from_settings(cls, config: Any = None) -> RPCManager:
        """Pool over ``ETH_RPC_URLS``, pinned to ``CHAIN_ID``."""
        if config is None:
            from config.settings import settings as config
        return cls(
            config.ETH_RPC_URLS,
            RPCManagerConfig(
                request_timeout_s=config.RPC_REQUEST_TIMEOUT_S,
                expected_chain_id=config.CHAIN_ID,
            ),
        )

    @property
    def health(self) -> dict[str, EndpointHealth]:
        return dict(self._health)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self, health_checks: bool = True) -> None:
        """Connect every endpoint, verify chain ids, start probing. Idempotent.

        Raises
        ------
        RPCError
            If ``expected_chain_id`` is set and no endpoint serves that chain.
        """
        if self._started:
            return

        for url in self._endpoints:
            provider = AsyncHTTPProvider(
                url, request_kwargs={"timeout": self._config.request_timeout_s}
            )
            self._clients[url] = AsyncWeb3(provider)
        self._started = True

        if self._config.expected_chain_id is not None:
            await self.verify_chain_ids()
        if health_checks:
            self._probe_task = asyncio.create_task(self._probe_loop(), name="rpc_probe")

        logger.info(
            "rpc_manager.started",
            endpoints=[redact_url(u) for u in self._clients],
            expected_chain_id=self._config.expected_chain_id,
        )

    async def stop(self) -> None:
        """Cancel probing and drop clients. Idempotent."""
        if not self._started:
            return

        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None

        self._clients.clear()
        self._started = False
        logger.info("rpc_manager.stopped")

    def attach(self, url: str, w3: AsyncWeb3) -> None:
        """Use a pre-built client for *url* (custom providers, tests)."""
        if url not in self._health:
            self._endpoints.append(url)
            self._health[url] = EndpointHealth(url=url)
        self._clients[url] = w3
        self._started = True

    async def verify_chain_ids(self) -> None:
        """Drop endpoints whose ``eth_chainId`` differs from the expected one.

        An endpoint that cannot answer stays in the pool; the probe loop
        and ``execute`` track its health from there.
        """
        expected = self._config.expected_chain_id
        if expected is None:
            return

        urls = list(self._clients)
        answers = await asyncio.gather(
            *(self._clients[u].eth.chain_id for u in urls), return_exceptions=True
        )
        for url, answer in zip(urls, answers):
            if isinstance(answer, BaseException):
                logger.warning(
                    "rpc_manager.chain_id_unavailable", url=redact_url(url), error=str(answer)
                )
                continue
            if answer != expected:
                logger.error(
                    "rpc_manager.wrong_chain",
                    url=redact_url(url),
                    chain_id=answer,
                    expected=expected,
                )
                del self._clients[url]

        if not self._clients:
            raise RPCError(f"No RPC endpoint serves chain {expected}")

    # ── Calls ────────────────────────────────────────────────────

    def get_web3(self) -> AsyncWeb3:
        """Client of the highest-ranked endpoint."""
        self._require_started()
        return self._clients[self._ranked()[0]]

    async def execute(self, fn: Callable[[AsyncWeb3], Awaitable[T]]) -> T:
        """Await ``fn(w3)`` on each endpoint in rank order until one answers.

        Raises
        ------
        RPCError
            If every endpoint failed at the transport level.
        """
        self._require_started()

        last_error: Exception | None = None
        for url in self._ranked():
            health = self._health[url]
            started = time.monotonic()
            try:
                result = await fn(self._clients[url])
            except self._config.non_retryable:
                health.ok(_elapsed_ms(started), self._config.latency_smoothing)
                raise
            except Exception as exc:
                health.fail(str(exc), self._config.degraded_after, self._config.down_after)
                last_error = exc
                logger.warning(
                    "rpc_manager.endpoint_failed",
                    url=redact_url(url),
                    error=str(exc),
                    failure_streak=health.failure_streak,
                )
                continue
            health.ok(_elapsed_ms(started), self._config.latency_smoothing)
            return result

        raise RPCError(f"All {len(self._clients)} RPC endpoints failed", last_error=last_error)

    def get_endpoint_status(self) -> list[dict[str, Any]]:
        return [self._health[url].snapshot() for url in self._endpoints]

    # ── Probing ──────────────────────────────────────────────────

    async def _probe_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._config.health_check_interval_s)
                await self.probe()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("rpc_manager.probe_error", error=str(exc))

    async def probe(self) -> None:
        """Read ``eth_blockNumber`` from every endpoint and record the result."""
        await asyncio.gather(*(self._probe_one(url) for url in list(self._clients)))

    async def _probe_one(self, url: str) -> None:
        health = self._health[url]
        started = time.monotonic()
        try:
            head = await self._clients[url].eth.block_number
        except Exception as exc:
            health.fail(str(exc), self._config.degraded_after, self._config.down_after)
            logger.warning("rpc_manager.probe_failed", url=redact_url(url), error=str(exc))
            return
        health.ok(_elapsed_ms(started), self._config.latency_smoothing)
        health.head_block = int(head)

    # ── Ranking ──────────────────────────────────────────────────

    def _ranked(self) -> list[str]:
        heads = [
            self._health[u].head_block
            for u in self._clients
            if self._health[u].head_block is not None
        ]
        best_head = max(heads) if heads else None

        def key(url: str) -> tuple[int, float]:
            health = self._health[url]
            rank = _STATUS_RANK[health.status]
            lagging = (
                best_head is not None
                and health.head_block is not None
                and best_head - health.head_block > self._config.max_block_lag
            )
            if lagging and rank == 0:
                rank = 1
            return rank, health.latency_ms

        return sorted(self._clients, key=key)

    def _require_started(self) -> None:
        if not self._started or not self._clients:
            raise RuntimeError("RPCManager not started; call start() first")

    # ── Context manager ──────────────────────────────────────────

    async def __aenter__(self) -> RPCManager:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class RPCError(Exception):
    """Raised when no endpoint could serve a request."""

    def __init__(self, message: str, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error
