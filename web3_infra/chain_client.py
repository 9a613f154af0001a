"""ChainClient — generic contract reads and signed transactions.

Every on-chain interaction of the workflow goes through here:
- ``call()`` — read-only contract call
- ``transact()`` — build, gas-check, sign (explicit ``Signer``), send, await receipt
- ``send_transaction()`` — relay an opaque ``{to, data, value, gas}`` payload

A revert detected while estimating gas is raised before anything is
broadcast, with the chain's reason attached.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from config.settings import settings
from models.settlement import SettlementResult, TxStatus
from web3_infra.abis import KNOWN_CUSTOM_ERRORS
from web3_infra.eip712_signer import Signer

logger = structlog.get_logger("web3_infra.chain_client")

_GWEI = Decimal("1000000000")

_ERROR_SELECTORS: dict[str, str] = {
    "0x" + keccak(text=sig)[:4].hex(): sig for sig in KNOWN_CUSTOM_ERRORS
}


def revert_reason(exc: ContractLogicError) -> str:
    """Best human-readable reason for a revert.

    Plain ``require`` strings come through ``message``; custom errors only
    carry a 4-byte selector in ``data``, decoded against the known list.
    """
    message = getattr(exc, "message", None) or str(exc)
    data = getattr(exc, "data", None)
    if isinstance(data, (bytes, bytearray)):
        data = "0x" + bytes(data).hex()
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        name = _ERROR_SELECTORS.get(data[:10].lower())
        if name is not None:
            return name
        if message in ("execution reverted", "execution reverted: "):
            return f"{message} (data={data})"
    return message


@dataclass
class ChainClientConfig:
    """Gas and confirmation settings."""

    chain_id: int = 1
    max_gas_price_gwei: Decimal = Decimal("200")
    gas_price_multiplier: Decimal = Decimal("1.2")
    gas_estimate_multiplier: Decimal = Decimal("1.25")
    tx_confirmation_timeout_s: float = 180.0

    @classmethod
    def from_settings(cls) -> ChainClientConfig:
        return cls(
            chain_id=settings.CHAIN_ID,
            max_gas_price_gwei=settings.MAX_GAS_PRICE_GWEI,
            gas_price_multiplier=settings.GAS_PRICE_MULTIPLIER,
            gas_estimate_multiplier=settings.GAS_ESTIMATE_MULTIPLIER,
            tx_confirmation_timeout_s=settings.TX_CONFIRMATION_TIMEOUT_S,
        )


class ChainClient:
    """Contract-call client over an ``RPCManager``.

    Usage::

        rpc = RPCManager.from_settings()
        await rpc.start()
        chain = ChainClient(rpc)

        balance = await chain.call(usdc, ERC20_ABI, "balanceOf", owner)
        result = await chain.transact(signer, usdc, ERC20_ABI, "approve", spender, amount)
    """

    def __init__(
        self,
        rpc_manager: Any,  # RPCManager
        config: ChainClientConfig | None = None,
    ) -> None:
        self._rpc = rpc_manager
        self._config = config or ChainClientConfig()

    @property
    def config(self) -> ChainClientConfig:
        return self._config

    # ── Reads ────────────────────────────────────────────────────

    async def call(self, address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> Any:
        """Read-only contract call.

        Raises
        ------
        ContractLogicError
            If the view function reverts.
        """

        async def _call(w3: AsyncWeb3) -> Any:
            contract = w3.eth.contract(address=to_checksum_address(address), abi=abi)
            return await getattr(contract.functions, fn_name)(*args).call()

        return await self._rpc.execute(_call)

    async def get_native_balance(self, address: str) -> int:
        checksum = to_checksum_address(address)

        async def _balance(w3: AsyncWeb3) -> int:
            return await w3.eth.get_balance(checksum)

        return await self._rpc.execute(_balance)

    async def get_gas_price_gwei(self) -> Decimal:
        async def _price(w3: AsyncWeb3) -> int:
            return await w3.eth.gas_price

        wei = await self._rpc.execute(_price)
        return Decimal(wei) / _GWEI

    # ── Writes ───────────────────────────────────────────────────

    async def transact(
        self,
        signer: Signer,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
        gas_limit: int | None = None,
    ) -> SettlementResult:
        """Call a state-changing contract function and wait for the receipt.

        Raises
        ------
        GasAbortError
            If the network gas price exceeds the configured maximum.
        TransactionRevertedError
            If gas estimation reverts (nothing broadcast) or the mined
            receipt reports failure.
        TransactionError
            If confirmation times out.
        """
        sender = to_checksum_address(signer.address)
        gas_price = await self._checked_gas_price()
        nonce = await self._pending_nonce(sender)

        async def _build(w3: AsyncWeb3) -> dict[str, Any]:
            contract = w3.eth.contract(address=to_checksum_address(address), abi=abi)
            fn = getattr(contract.functions, fn_name)(*args)
            params: dict[str, Any] = {
                "from": sender,
                "value": value,
                "nonce": nonce,
                "gasPrice": gas_price,
                "chainId": self._config.chain_id,
            }
            if gas_limit is None:
                estimate = await fn.estimate_gas({"from": sender, "value": value})
                params["gas"] = int(Decimal(estimate) * self._config.gas_estimate_multiplier)
            else:
                params["gas"] = gas_limit
            return await fn.build_transaction(params)

        try:
            tx = await self._rpc.execute(_build)
        except ContractLogicError as exc:
            reason = revert_reason(exc)
            logger.warning(
                "chain_client.estimate_reverted",
                contract=address,
                fn=fn_name,
                reason=reason,
            )
            raise TransactionRevertedError(reason) from exc

        logger.debug("chain_client.tx_built", contract=address, fn=fn_name, gas=tx.get("gas"))
        return await self._sign_and_send(signer, tx)

    async def send_transaction(self, signer: Signer, payload: dict[str, Any]) -> SettlementResult:
        """Relay a ready-made ``{to, data, value, gas}`` transaction."""
        sender = to_checksum_address(signer.address)
        gas_price = await self._checked_gas_price()
        nonce = await self._pending_nonce(sender)

        tx: dict[str, Any] = {
            "from": sender,
            "to": to_checksum_address(payload["to"]),
            "data": payload.get("data", "0x"),
            "value": int(payload.get("value", 0)),
            "nonce": nonce,
            "gasPrice": gas_price,
            "chainId": self._config.chain_id,
        }
        if payload.get("gas"):
            tx["gas"] = int(payload["gas"])
        else:

            async def _estimate(w3: AsyncWeb3) -> int:
                return await w3.eth.estimate_gas(tx)

            try:
                estimate = await self._rpc.execute(_estimate)
            except ContractLogicError as exc:
                raise TransactionRevertedError(revert_reason(exc)) from exc
            tx["gas"] = int(Decimal(estimate) * self._config.gas_estimate_multiplier)

        return await self._sign_and_send(signer, tx)

    # ── Internals ────────────────────────────────────────────────

    async def _checked_gas_price(self) -> int:
        """Current gas price with the multiplier applied.

        Raises
        ------
        GasAbortError
            If the raw price exceeds ``max_gas_price_gwei``.
        """

        async def _price(w3: AsyncWeb3) -> int:
            return await w3.eth.gas_price

        wei = await self._rpc.execute(_price)
        gwei = Decimal(wei) / _GWEI
        if gwei > self._config.max_gas_price_gwei:
            raise GasAbortError(
                f"Gas price {gwei} Gwei exceeds maximum "
                f"{self._config.max_gas_price_gwei} Gwei"
            )
        return int(Decimal(wei) * self._config.gas_price_multiplier)

    async def _pending_nonce(self, sender: str) -> int:
        async def _nonce(w3: AsyncWeb3) -> int:
            return await w3.eth.get_transaction_count(sender, "pending")

        return await self._rpc.execute(_nonce)

    async def _sign_and_send(self, signer: Signer, tx: dict[str, Any]) -> SettlementResult:
        raw = signer.sign_transaction(tx)

        async def _send(w3: AsyncWeb3) -> Any:
            return await w3.eth.send_raw_transaction(raw)

        tx_hash = await self._rpc.execute(_send)
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("chain_client.tx_sent", tx_hash=tx_hash_hex, to=tx.get("to"))

        w3 = self._rpc.get_web3()
        timeout = self._config.tx_confirmation_timeout_s
        try:
            receipt = await asyncio.wait_for(
                w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout),
                timeout=timeout + 10,
            )
        except (asyncio.TimeoutError, TimeExhausted) as exc:
            logger.error("chain_client.tx_timeout", tx_hash=tx_hash_hex, error=str(exc))
            result = SettlementResult(
                tx_hash=tx_hash_hex,
                block_number=0,
                gas_used=0,
                status=TxStatus.FAILED,
                error=f"Transaction confirmation timeout: {exc}",
            )
            raise TransactionError(
                f"Confirmation timeout for {tx_hash_hex}",
                tx_hash=tx_hash_hex,
                result=result,
            ) from exc

        gas_used = receipt.get("gasUsed", 0)
        block_number = receipt.get("blockNumber", 0)
        effective = receipt.get("effectiveGasPrice", tx.get("gasPrice", 0))

        if receipt.get("status", 0) != 1:
            reason = await self._replay_revert_reason(tx, block_number)
            logger.error(
                "chain_client.tx_reverted",
                tx_hash=tx_hash_hex,
                gas_used=gas_used,
                reason=reason,
            )
            result = SettlementResult(
                tx_hash=tx_hash_hex,
                block_number=block_number,
                gas_used=gas_used,
                status=TxStatus.REVERTED,
                effective_gas_price_gwei=Decimal(effective) / _GWEI,
                error=reason,
            )
            raise TransactionRevertedError(reason, tx_hash=tx_hash_hex, result=result)

        logger.info(
            "chain_client.tx_confirmed",
            tx_hash=tx_hash_hex,
            block=block_number,
            gas_used=gas_used,
        )
        return SettlementResult(
            tx_hash=tx_hash_hex,
            block_number=block_number,
            gas_used=gas_used,
            status=TxStatus.CONFIRMED,
            effective_gas_price_gwei=Decimal(effective) / _GWEI,
        )

    async def _replay_revert_reason(self, tx: dict[str, Any], block_number: int) -> str:
        """Re-run a mined failed tx as ``eth_call`` to read its revert reason."""
        call_tx = {k: tx[k] for k in ("from", "to", "data", "value") if k in tx}

        async def _replay(w3: AsyncWeb3) -> Any:
            return await w3.eth.call(call_tx, block_identifier=block_number)

        try:
            await self._rpc.execute(_replay)
        except ContractLogicError as exc:
            return revert_reason(exc)
        except Exception as exc:
            logger.warning("chain_client.revert_replay_failed", error=str(exc))
        return "Transaction reverted"


# ── Exceptions ───────────────────────────────────────────────────────


class GasAbortError(Exception):
    """Raised when gas price exceeds configured maximum."""
    pass


class TransactionError(Exception):
    """Raised when a transaction fails or cannot be confirmed."""

    def __init__(
        self,
        message: str,
        tx_hash: str | None = None,
        result: SettlementResult | None = None,
    ) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.result = result


class TransactionRevertedError(TransactionError):
    """Raised when the EVM reverts, either at estimation or on-chain."""

    def __init__(
        self,
        reason: str,
        tx_hash: str | None = None,
        result: SettlementResult | None = None,
    ) -> None:
        super().__init__(reason, tx_hash=tx_hash, result=result)
        self.reason = reason
