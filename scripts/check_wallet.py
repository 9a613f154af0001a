#!/usr/bin/env python3
"""Check wallet status: ETH, WETH and USDC balances, settlement/router allowances.

Usage:
    PRIVATE_KEY=0x... python scripts/check_wallet.py
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.settings import settings
from config.tokens import TOKENS, from_base_units
from core.logger import setup_logging
from execution.preconditions import PreconditionChecker
from web3_infra.chain_client import ChainClient, ChainClientConfig
from web3_infra.eip712_signer import LocalSigner
from web3_infra.rpc_manager import RPCManager


async def main() -> int:
    setup_logging()
    if not settings.PRIVATE_KEY:
        print("ERROR: PRIVATE_KEY not set")
        return 1

    signer = LocalSigner.from_key(settings.PRIVATE_KEY)
    address = signer.address
    print("═══ Limit Order Wallet Status ═══")
    print(f"Address: {address}")
    print(f"Chain:   {settings.CHAIN_ID}")

    rpc = RPCManager.from_settings()
    await rpc.start(health_checks=False)
    try:
        chain = ChainClient(rpc, ChainClientConfig.from_settings())
        checker = PreconditionChecker(
            chain,
            native_asset=settings.NATIVE_ASSET_ADDRESS,
            wrapped_native=settings.WETH_ADDRESS,
        )

        # 1. Balances
        print("\n─── Balances ───")
        balances = {}
        for symbol, token in TOKENS.items():
            try:
                raw = await checker.balance_of(address, token.address)
            except Exception as e:
                print(f"  ⚠️  {symbol}: {e}")
                continue
            balances[symbol] = raw
            status = "✅" if raw > 0 else "⚠️ "
            print(f"  {status} {symbol}: {from_base_units(raw, token.decimals)}")

        # 2. Allowances
        print("\n─── Allowances ───")
        spenders = {
            "settlement": settings.SETTLEMENT_ADDRESS,
            "router": settings.ROUTER_ADDRESS,
        }
        for symbol in ("WETH", "USDC"):
            token = TOKENS[symbol]
            for label, spender in spenders.items():
                try:
                    raw = await checker.allowance_of(address, token.address, spender)
                except Exception as e:
                    print(f"  ⚠️  {symbol} → {label}: {e}")
                    continue
                status = "✅" if raw > 0 else "❌"
                print(f"  {status} {symbol} → {label}: {from_base_units(raw, token.decimals)}")

        gas = await chain.get_gas_price_gwei()
        print(f"\n─── Gas ───\n  {gas:.2f} Gwei (max {settings.MAX_GAS_PRICE_GWEI})")
    finally:
        await rpc.stop()

    # Summary
    print("\n═══ Summary ═══")
    issues = []
    if balances.get("ETH", 0) == 0:
        issues.append("Need ETH for gas")
    if balances.get("WETH", 0) == 0 and balances.get("USDC", 0) == 0:
        issues.append("Need WETH or USDC to offer in an order")
    if gas > settings.MAX_GAS_PRICE_GWEI:
        issues.append("Gas price above MAX_GAS_PRICE_GWEI; transactions will abort")

    if issues:
        print("  ⚠️  Issues found:")
        for issue in issues:
            print(f"    • {issue}")
    else:
        print("  ✅ Ready to trade! Missing allowances are approved by the workflow.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
