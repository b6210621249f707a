# swapbot/abis.py
"""
Contract ABIs and raw calldata helpers
"""

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

# =============================================================================
# ERC20
# =============================================================================

ERC20_ABI = [
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
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# =============================================================================
# PERMIT2
# =============================================================================

PERMIT2_ABI = [
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [
            {"name": "amount", "type": "uint160"},
            {"name": "expiration", "type": "uint48"},
            {"name": "nonce", "type": "uint48"},
        ],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint160"},
            {"name": "expiration", "type": "uint48"},
        ],
        "outputs": [],
    },
]

# =============================================================================
# UNISWAP V4
# =============================================================================

_POOL_KEY_COMPONENTS = [
    {"name": "currency0", "type": "address"},
    {"name": "currency1", "type": "address"},
    {"name": "fee", "type": "uint24"},
    {"name": "tickSpacing", "type": "int24"},
    {"name": "hooks", "type": "address"},
]

V4_QUOTER_ABI = [
    {
        "name": "quoteExactInputSingle",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "poolKey", "type": "tuple", "components": _POOL_KEY_COMPONENTS},
                    {"name": "zeroForOne", "type": "bool"},
                    {"name": "exactAmount", "type": "uint128"},
                    {"name": "hookData", "type": "bytes"},
                ],
            }
        ],
        "outputs": [
            {"name": "amountOut", "type": "uint256"},
            {"name": "gasEstimate", "type": "uint256"},
        ],
    },
]

# Universal Router command / V4 router action ids
V4_SWAP = 0x10
SWAP_EXACT_IN_SINGLE = 0x06
SETTLE_ALL = 0x0C
TAKE_ALL = 0x0F

# =============================================================================
# CHAINLINK
# =============================================================================

CHAINLINK_ABI = [
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]


# =============================================================================
# CALLDATA HELPERS
# =============================================================================

APPROVE_SELECTOR = function_signature_to_4byte_selector("approve(address,uint256)")
PERMIT2_APPROVE_SELECTOR = function_signature_to_4byte_selector(
    "approve(address,address,uint160,uint48)"
)
EXECUTE_SELECTOR = function_signature_to_4byte_selector("execute(bytes,bytes[],uint256)")


def encode_approve(spender: str, amount: int) -> str:
    """ERC20 approve(spender, amount) calldata as 0x-hex"""
    args = encode(["address", "uint256"], [to_checksum_address(spender), amount])
    return "0x" + (APPROVE_SELECTOR + args).hex()


def encode_permit2_approve(token: str, spender: str, amount: int, expiration: int) -> str:
    args = encode(
        ["address", "address", "uint160", "uint48"],
        [to_checksum_address(token), to_checksum_address(spender), amount, expiration],
    )
    return "0x" + (PERMIT2_APPROVE_SELECTOR + args).hex()


def encode_execute(commands: bytes, inputs: list, deadline: int) -> str:
    """Universal Router execute(commands, inputs, deadline) calldata"""
    args = encode(["bytes", "bytes[]", "uint256"], [commands, inputs, deadline])
    return "0x" + (EXECUTE_SELECTOR + args).hex()


def decode_approve_spender(data: str):
    """Spender of an ERC20 approve() calldata, or None if `data` is not one"""
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if len(raw) < 4 + 64 or raw[:4] != APPROVE_SELECTOR:
        return None
    spender, _amount = decode(["address", "uint256"], raw[4:4 + 64])
    return to_checksum_address(spender)
