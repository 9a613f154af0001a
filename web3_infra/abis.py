"""Minimal ABI fragments for the contracts the workflow touches."""

from __future__ import annotations

# ── ERC-20 ──────────────────────────────────────────────────────────

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

# WETH9 adds payable deposit on top of ERC-20
WETH_ABI = ERC20_ABI + [
    {
        "name": "deposit",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [],
        "outputs": [],
    },
]

# ── Limit Order Protocol v4 (inside 1inch Aggregation Router v6) ────

# Address fields are the contract's ``Address`` value type, i.e. uint256.
_LOP_V4_ORDER_COMPONENTS = [
    {"name": "salt", "type": "uint256"},
    {"name": "maker", "type": "uint256"},
    {"name": "receiver", "type": "uint256"},
    {"name": "makerAsset", "type": "uint256"},
    {"name": "takerAsset", "type": "uint256"},
    {"name": "makingAmount", "type": "uint256"},
    {"name": "takingAmount", "type": "uint256"},
    {"name": "makerTraits", "type": "uint256"},
]

LOP_V4_ORDER_TUPLE_TYPE = "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256)"

LOP_V4_ABI = [
    {
        "name": "fillOrder",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "order", "type": "tuple", "components": _LOP_V4_ORDER_COMPONENTS},
            {"name": "r", "type": "bytes32"},
            {"name": "vs", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
            {"name": "takerTraits", "type": "uint256"},
        ],
        "outputs": [
            {"name": "makingAmount", "type": "uint256"},
            {"name": "takingAmount", "type": "uint256"},
            {"name": "orderHash", "type": "bytes32"},
        ],
    },
    {
        "name": "hashOrder",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "order", "type": "tuple", "components": _LOP_V4_ORDER_COMPONENTS},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "rawRemainingInvalidatorForOrder",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "maker", "type": "address"},
            {"name": "orderHash", "type": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "bitInvalidatorForOrder",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "maker", "type": "address"},
            {"name": "slot", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# ── Uniswap V2 Router02 ─────────────────────────────────────────────

UNISWAP_V2_ROUTER_ABI = [
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactTokensForTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactETHForTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
]

# Custom errors whose selectors get decoded into readable revert reasons
KNOWN_CUSTOM_ERRORS = [
    "BadSignature()",
    "OrderExpired()",
    "PrivateOrder()",
    "InvalidatedOrder()",
    "RemainingInvalidatedOrder()",
    "PartialFillNotAllowed()",
    "WrongSeriesNonce()",
    "SwapWithZeroAmount()",
    "MakingAmountTooLow()",
    "TakingAmountTooHigh()",
    "TakingAmountExceeded()",
    "TransferFromMakerToTakerFailed()",
    "TransferFromTakerToMakerFailed()",
    "InvalidMsgValue()",
    "EpochManagerAndBitInvalidatorsAreIncompatible()",
]
