"""In-memory chain and offline test keys.

``FakeChain`` duck-types ``ChainClient`` (``call``, ``transact``,
``send_transaction``, ``get_native_balance``) and models just enough of
the ERC-20 tokens, the Uniswap V2 router and the Limit Order Protocol v4
contract for end-to-end workflow tests. Signatures are recovered with
``eth_keys`` exactly as the contract would.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from eth_keys import keys
from eth_utils import keccak, to_checksum_address

from config.settings import settings
from execution.protocol import LimitOrderV4Adapter
from models.order import UINT256_MAX
from models.settlement import SettlementResult
from web3_infra.chain_client import TransactionRevertedError

# Well-known development keys (never funded on mainnet)
MAKER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TAKER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"

SETTLEMENT = to_checksum_address(settings.SETTLEMENT_ADDRESS)
ROUTER = to_checksum_address(settings.ROUTER_ADDRESS)
WETH = to_checksum_address(settings.WETH_ADDRESS)
USDC = to_checksum_address(settings.USDC_ADDRESS)
NATIVE = to_checksum_address(settings.NATIVE_ASSET_ADDRESS)

NOW = 1_700_000_000
ONE_ETH = 10**18
USDC_2500 = 2500 * 10**6

_S_MASK = (1 << 255) - 1


class FakeChain:
    """In-memory ledger and contracts behind the ``ChainClient`` interface."""

    def __init__(self, adapter: LimitOrderV4Adapter) -> None:
        self.adapter = adapter
        self.now = NOW
        self.block_number = 19_000_000
        self.balances: dict[tuple[str, str], int] = defaultdict(int)
        self.native: dict[str, int] = defaultdict(int)
        self.allowances: dict[tuple[str, str, str], int] = defaultdict(int)
        self.remaining_invalidators: dict[tuple[str, bytes], int] = defaultdict(int)
        self.bit_invalidators: dict[tuple[str, int], int] = defaultdict(int)
        # (asset_in, asset_out) -> (numerator, denominator) per base unit in
        self.rates: dict[tuple[str, str], tuple[int, int]] = {
            (WETH, USDC): (USDC_2500, ONE_ETH),
            (USDC, WETH): (ONE_ETH, USDC_2500),
        }
        self.transactions: list[dict[str, Any]] = []
        self.failing_queries: set[str] = set()
        self.ignored_approvals: set[str] = set()
        self.router_revert: str | None = None
        self.hash_override: bytes | None = None

    # ── Helpers for tests ────────────────────────────────────────

    def mint(self, asset: str, account: str, amount: int) -> None:
        asset, account = to_checksum_address(asset), to_checksum_address(account)
        if asset == NATIVE:
            self.native[account] += amount
        else:
            self.balances[(asset, account)] += amount

    def balance(self, asset: str, account: str) -> int:
        asset, account = to_checksum_address(asset), to_checksum_address(account)
        if asset == NATIVE:
            return self.native[account]
        return self.balances[(asset, account)]

    def sent(self, fn_name: str) -> list[dict[str, Any]]:
        return [tx for tx in self.transactions if tx["fn"] == fn_name]

    # ── ChainClient interface ────────────────────────────────────

    async def get_native_balance(self, address: str) -> int:
        return self.native[to_checksum_address(address)]

    async def call(self, address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> Any:
        if fn_name in self.failing_queries:
            raise RuntimeError(f"{fn_name} unavailable")
        address = to_checksum_address(address)
        if fn_name == "balanceOf":
            return self.balances[(address, to_checksum_address(args[0]))]
        if fn_name == "allowance":
            owner, spender = (to_checksum_address(a) for a in args)
            return self.allowances[(address, owner, spender)]
        if fn_name == "decimals":
            return 6 if address == USDC else 18
        if fn_name == "getAmountsOut":
            amount_in, path = args
            return [amount_in, self._quote(amount_in, path)]
        if fn_name == "hashOrder":
            if self.hash_override is not None:
                return self.hash_override
            return self.adapter.hash_order(self.adapter.order_from_tuple(args[0]))
        if fn_name == "rawRemainingInvalidatorForOrder":
            maker, order_hash = args
            return self.remaining_invalidators[(to_checksum_address(maker), bytes(order_hash))]
        if fn_name == "bitInvalidatorForOrder":
            maker, slot = args
            return self.bit_invalidators[(to_checksum_address(maker), slot)]
        raise NotImplementedError(fn_name)

    async def transact(
        self,
        signer: Any,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
        gas_limit: int | None = None,
    ) -> SettlementResult:
        sender = to_checksum_address(signer.address)
        address = to_checksum_address(address)
        if self.native[sender] < value:
            raise TransactionRevertedError("insufficient funds for gas * price + value")

        handler = getattr(self, f"_tx_{fn_name}")
        handler(sender, address, *args, value=value)

        self.native[sender] -= value
        return self._record(sender, address, fn_name, args, value)

    async def send_transaction(self, signer: Any, payload: dict[str, Any]) -> SettlementResult:
        sender = to_checksum_address(signer.address)
        return self._record(sender, payload["to"], "raw", (payload["data"],), int(payload["value"]))

    # ── Contract behaviour ───────────────────────────────────────

    def _quote(self, amount_in: int, path: list[str]) -> int:
        num, den = self.rates[(to_checksum_address(path[0]), to_checksum_address(path[-1]))]
        return amount_in * num // den

    def _transfer_from(self, token: str, owner: str, spender: str, to: str, amount: int) -> bool:
        if self.balances[(token, owner)] < amount:
            return False
        if self.allowances[(token, owner, spender)] < amount:
            return False
        self.allowances[(token, owner, spender)] -= amount
        self.balances[(token, owner)] -= amount
        self.balances[(token, to)] += amount
        return True

    def _tx_approve(self, sender: str, token: str, spender: str, amount: int, value: int) -> None:
        if token in self.ignored_approvals:
            return
        self.allowances[(token, sender, to_checksum_address(spender))] = amount

    def _tx_deposit(self, sender: str, token: str, value: int) -> None:
        self.balances[(token, sender)] += value

    def _swap(self, sender: str, amount_in: int, min_out: int, path: list[str], to: str, deadline: int) -> int:
        if self.router_revert is not None:
            raise TransactionRevertedError(self.router_revert)
        if deadline < self.now:
            raise TransactionRevertedError("UniswapV2Router: EXPIRED")
        out = self._quote(amount_in, path)
        if out < min_out:
            raise TransactionRevertedError("UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT")
        self.balances[(to_checksum_address(path[-1]), to_checksum_address(to))] += out
        return out

    def _tx_swapExactTokensForTokens(
        self, sender: str, router: str, amount_in: int, min_out: int, path: list[str], to: str, deadline: int, value: int
    ) -> None:
        token_in = to_checksum_address(path[0])
        if self.balances[(token_in, sender)] < amount_in or self.allowances[(token_in, sender, router)] < amount_in:
            raise TransactionRevertedError("TransferHelper: TRANSFER_FROM_FAILED")
        self._swap(sender, amount_in, min_out, path, to, deadline)
        self.allowances[(token_in, sender, router)] -= amount_in
        self.balances[(token_in, sender)] -= amount_in

    def _tx_swapExactETHForTokens(
        self, sender: str, router: str, min_out: int, path: list[str], to: str, deadline: int, value: int
    ) -> None:
        if to_checksum_address(path[0]) != WETH:
            raise TransactionRevertedError("UniswapV2Router: INVALID_PATH")
        self._swap(sender, value, min_out, path, to, deadline)

    def _tx_fillOrder(
        self, taker: str, settlement: str, order_tuple: tuple, r: bytes, vs: bytes, amount: int, taker_traits: int, value: int
    ) -> None:
        order = self.adapter.order_from_tuple(order_tuple)
        digest = self.adapter.hash_order(order)

        vs_int = int.from_bytes(vs, "big")
        sig = keys.Signature(
            vrs=(vs_int >> 255, int.from_bytes(r, "big"), vs_int & _S_MASK)
        )
        if sig.recover_public_key_from_msg_hash(digest).to_checksum_address() != order.maker:
            raise TransactionRevertedError("BadSignature()")

        traits = order.traits
        if traits.is_expired(self.now):
            raise TransactionRevertedError("OrderExpired()")
        if amount < order.making_amount and not traits.allow_partial_fills:
            raise TransactionRevertedError("PartialFillNotAllowed()")

        key = (order.maker, digest)
        if traits.uses_bit_invalidator:
            slot_key = (order.maker, traits.nonce >> 8)
            if self.bit_invalidators[slot_key] & (1 << (traits.nonce & 0xFF)):
                raise TransactionRevertedError("InvalidatedOrder()")
            remaining = order.making_amount
        else:
            raw = self.remaining_invalidators[key]
            remaining = order.making_amount if raw == 0 else ~raw & UINT256_MAX
        if amount > remaining:
            raise TransactionRevertedError("RemainingInvalidatedOrder()")

        taking = self.adapter.taking_amount_for(order, amount)
        if taking > taker_traits & LimitOrderV4Adapter.THRESHOLD_MASK:
            raise TransactionRevertedError("TakingAmountTooHigh()")

        maker_asset, taker_asset = order.maker_asset, order.taker_asset
        if (
            self.balances[(maker_asset, order.maker)] < amount
            or self.allowances[(maker_asset, order.maker, settlement)] < amount
        ):
            raise TransactionRevertedError("TransferFromMakerToTakerFailed()")
        if (
            self.balances[(taker_asset, taker)] < taking
            or self.allowances[(taker_asset, taker, settlement)] < taking
        ):
            raise TransactionRevertedError("TransferFromTakerToMakerFailed()")

        self._transfer_from(maker_asset, order.maker, settlement, taker, amount)
        self._transfer_from(taker_asset, taker, settlement, order.receiver, taking)
        if traits.uses_bit_invalidator:
            self.bit_invalidators[(order.maker, traits.nonce >> 8)] |= 1 << (traits.nonce & 0xFF)
        else:
            self.remaining_invalidators[key] = ~(remaining - amount) & UINT256_MAX

    def _record(self, sender: str, to: str, fn_name: str, args: tuple, value: int) -> SettlementResult:
        self.block_number += 1
        tx_hash = "0x" + keccak(
            text=f"{sender}:{len(self.transactions)}:{fn_name}"
        ).hex()
        self.transactions.append(
            {"from": sender, "to": to_checksum_address(to), "fn": fn_name, "args": args, "value": value}
        )
        return SettlementResult(tx_hash=tx_hash, block_number=self.block_number, gas_used=120_000)


class AwaitableValue:
    """Stands in for web3 properties awaited without a call (``w3.eth.chain_id``)."""

    def __init__(self, value: Any) -> None:
        self._value = value

    def __await__(self):
        if isinstance(self._value, BaseException):
            raise self._value
        yield from ()
        return self._value
