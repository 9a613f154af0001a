"""AggregatorClient — HTTP quoting API relayed to the chain.

The API is a black box: it returns a quote, or a ready-to-send transaction
(``to``, ``data``, ``value``, ``gas``) that is signed and relayed as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog
from eth_utils import to_checksum_address

from models.settlement import ExecutionPath, SettlementResult
from web3_infra.eip712_signer import Signer

logger = structlog.get_logger("data.aggregator_client")

_API_VERSION = "v6.0"


@dataclass(frozen=True)
class SwapTransaction:
    """Transaction payload returned by the swap endpoint."""

    to: str
    data: str
    value: int
    gas: int
    to_amount: int

    def as_payload(self) -> dict[str, Any]:
        return {"to": self.to, "data": self.data, "value": self.value, "gas": self.gas}


@dataclass(frozen=True)
class AggregatorExecution:
    """A swap relayed from the aggregator API, tagged with its path."""

    swap: SwapTransaction
    settlement: SettlementResult
    approval: SettlementResult | None = None
    path: ExecutionPath = ExecutionPath.AGGREGATOR


class AggregatorClient:
    """Async client for the 1inch swap API.

    Parameters
    ----------
    base_url:
        API root, or a proxy in front of it.
    chain_id:
        Chain the quotes are requested for.
    api_key:
        Sent as a Bearer token when non-empty.
    timeout_s:
        Per-request timeout.
    transport:
        Optional ``httpx`` transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = "https://api.1inch.dev",
        chain_id: int = 1,
        api_key: str = "",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._chain_id = chain_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, config: Any = None) -> AggregatorClient:
        if config is None:
            from config.settings import settings as config
        return cls(
            base_url=config.AGGREGATOR_BASE_URL,
            chain_id=config.CHAIN_ID,
            api_key=config.AGGREGATOR_API_KEY,
            timeout_s=config.AGGREGATOR_TIMEOUT_S,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AggregatorClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ── Endpoints ────────────────────────────────────────────────

    async def get_quote(self, src: str, dst: str, amount: int) -> dict[str, Any]:
        """Raw quote JSON for swapping *amount* base units of *src* into *dst*."""
        params = {
            "src": to_checksum_address(src),
            "dst": to_checksum_address(dst),
            "amount": str(amount),
        }
        return await self._get("quote", params)

    async def get_swap(
        self,
        src: str,
        dst: str,
        amount: int,
        from_address: str,
        slippage_pct: float = 1.0,
    ) -> SwapTransaction:
        params = {
            "src": to_checksum_address(src),
            "dst": to_checksum_address(dst),
            "amount": str(amount),
            "from": to_checksum_address(from_address),
            "slippage": str(slippage_pct),
        }
        body = await self._get("swap", params)
        try:
            tx = body["tx"]
            return SwapTransaction(
                to=to_checksum_address(tx["to"]),
                data=tx["data"],
                value=int(tx.get("value") or 0),
                gas=int(tx.get("gas") or 0),
                to_amount=int(body.get("toAmount") or body.get("dstAmount") or 0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AggregatorError(f"Malformed swap response: {exc}", body=str(body)) from exc

    async def execute_swap(
        self,
        chain: Any,  # ChainClient
        signer: Signer,
        src: str,
        dst: str,
        amount: int,
        slippage_pct: float = 1.0,
        preconditions: Any = None,  # PreconditionChecker
    ) -> AggregatorExecution:
        """Fetch a swap payload and relay it through *chain*.

        When *preconditions* is given, the payload's target is approved for
        a non-native *src* first.
        """
        swap = await self.get_swap(src, dst, amount, signer.address, slippage_pct)

        approval = None
        if preconditions is not None:
            approval = await preconditions.ensure_allowance(signer, src, amount, swap.to)

        result = await chain.send_transaction(signer, swap.as_payload())
        logger.info(
            "aggregator_client.swap_relayed",
            tx_hash=result.tx_hash,
            to=swap.to,
            expected_out=swap.to_amount,
        )
        return AggregatorExecution(swap=swap, settlement=result, approval=approval)

    # ── Internals ────────────────────────────────────────────────

    async def _get(self, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        path = f"/swap/{_API_VERSION}/{self._chain_id}/{endpoint}"
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("aggregator_client.request_failed", endpoint=endpoint, error=str(exc))
            raise AggregatorError(f"{endpoint} request failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "aggregator_client.bad_status",
                endpoint=endpoint,
                status=response.status_code,
            )
            raise AggregatorError(
                f"{endpoint} API failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()


class AggregatorError(Exception):
    """Raised when the quoting API rejects a request or returns garbage."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
