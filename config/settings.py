"""Pydantic BaseSettings — token amounts are integers, gas scaling is Decimal, never float."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from env / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ─────────────────────────────────────────────
    APP_ENV: Literal["dev", "test", "prod"] = "dev"
    APP_NAME: str = "limit-order-workflow"
    LOG_LEVEL: str = "INFO"

    # ── Network ─────────────────────────────────────────────────
    # JSON list in the environment, e.g. ETH_RPC_URLS='["https://..."]'
    ETH_RPC_URLS: list[str] = Field(
        default_factory=lambda: ["https://ethereum-rpc.publicnode.com"]
    )
    CHAIN_ID: int = 1

    # ── Credentials (never commit real values) ──────────────────
    PRIVATE_KEY: str = ""

    # ── Contracts (Ethereum mainnet) ────────────────────────────
    # 1inch Aggregation Router v6, which embeds Limit Order Protocol v4
    SETTLEMENT_ADDRESS: str = "0x111111125421ca6dc452d289314280a0f8842a65"
    SETTLEMENT_PROTOCOL_VERSION: str = "v4"
    # Uniswap V2 Router02
    ROUTER_ADDRESS: str = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
    WETH_ADDRESS: str = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
    USDC_ADDRESS: str = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
    NATIVE_ASSET_ADDRESS: str = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

    # ── Workflow policy ─────────────────────────────────────────
    FALLBACK_ENABLED: bool = True
    FALLBACK_SLIPPAGE_BPS: int = 500
    FALLBACK_DEADLINE_SECONDS: int = 1200
    ORDER_EXPIRY_SECONDS: int = 3600
    APPROVE_UNLIMITED: bool = False

    # ── Gas ─────────────────────────────────────────────────────
    MAX_GAS_PRICE_GWEI: Decimal = Field(default=Decimal("200"))
    GAS_PRICE_MULTIPLIER: Decimal = Field(default=Decimal("1.2"))
    GAS_ESTIMATE_MULTIPLIER: Decimal = Field(default=Decimal("1.25"))
    TX_CONFIRMATION_TIMEOUT_S: float = 180.0
    RPC_REQUEST_TIMEOUT_S: float = 10.0

    # ── HTTP quoting API (optional) ─────────────────────────────
    AGGREGATOR_BASE_URL: str = "https://api.1inch.dev"
    AGGREGATOR_API_KEY: str = ""
    AGGREGATOR_TIMEOUT_S: float = 10.0


settings = Settings()
