# swapbot/config.py
"""
Swap Bot Configuration
Alternating USDT <-> USDC swaps on Base, best price across aggregators
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv
from pathlib import Path
from decimal import Decimal

# -----------------------------
# Load .env safely
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / "config" / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)
else:
    load_dotenv()


def _env_list(name: str) -> list:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# -----------------------------
# Chain Configuration
# -----------------------------
CHAIN_ID = 8453  # Base mainnet
CHAIN_NAME = "base"
NATIVE_SYMBOL = "ETH"

# -----------------------------
# RPC Configuration (Multiple for redundancy)
# -----------------------------
PUBLIC_RPC_ENDPOINTS = [
    "https://1rpc.io/base",
    "https://base.meowrpc.com",
    "https://base.drpc.org",
    "https://endpoints.omniatech.io/v1/base/mainnet/public",
]

# Private endpoints from RPC_URLS go first
_CUSTOM_RPC_ENDPOINTS = _env_list("RPC_URLS")
RPC_ENDPOINTS = _CUSTOM_RPC_ENDPOINTS + [
    url for url in PUBLIC_RPC_ENDPOINTS if url not in _CUSTOM_RPC_ENDPOINTS
]

RPC_REQUEST_TIMEOUT = float(os.getenv("RPC_REQUEST_TIMEOUT", "10"))
RPC_MAX_ATTEMPTS = int(os.getenv("RPC_MAX_ATTEMPTS", "3"))
RPC_BACKOFF_SECONDS = 1.0
RPC_BACKOFF_MAX_SECONDS = 8.0

MAX_RPC_LATENCY = 2.0  # seconds
MAX_BLOCK_LAG = 5      # blocks

# -----------------------------
# Aggregator APIs
# -----------------------------
ZEROX_BASE_URL = os.getenv("ZEROX_BASE_URL", "https://api.0x.org")
ZEROX_API_KEY = os.getenv("ZEROX_API_KEY", "")

RELAY_BASE_URL = os.getenv("RELAY_BASE_URL", "https://api.relay.link")

QUOTE_TIMEOUT_SECONDS = float(os.getenv("QUOTE_TIMEOUT_SECONDS", "10"))
QUOTE_HTTP_ATTEMPTS = 2

# "parallel" (best net value) or "sequential" (first viable in priority order)
QUOTE_MODE = os.getenv("QUOTE_MODE", "parallel")

# Priority order for sequential mode and tie-breaking
SOURCE_PRIORITY = ["uniswap_v4", "relay", "0x"]

# -----------------------------
# Trading Parameters
# -----------------------------
SLIPPAGE_BPS = int(os.getenv("SLIPPAGE_BPS", "100"))  # 1.00%

# Minimum buy amount as a fraction (bps) of a naive 1:1 estimate
SOURCE_MIN_OUTPUT_BPS = {
    "uniswap_v4": 9800,
    "relay": 9500,
    "0x": 9500,
}
AGGREGATE_MIN_OUTPUT_BPS = 9500

BALANCE_USAGE_BPS = 9900              # swap 99% of the sell balance
MIN_SWAP_AMOUNT = Decimal("0.1")      # human units of the sell token

# -----------------------------
# Uniswap V4 (Base)
# -----------------------------
UNIVERSAL_ROUTER = os.getenv("UNIVERSAL_ROUTER", "0x6fF5693b99212Da76ad316178A184AB56D299b43")
V4_QUOTER = os.getenv("V4_QUOTER", "0x0d5e0F971ED27FBfF6c2837bf31316121532048D")
PERMIT2 = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

# fee (hundredths of a bip) -> tick spacing
UNISWAP_FEE_TIERS = {
    100: 1,
    500: 10,
    3000: 60,
}
UNISWAP_MIN_NOTIONAL = Decimal("1")   # below this quoting is unreliable / gas-inefficient
UNISWAP_DEADLINE_SECONDS = 3600

# -----------------------------
# Gas Configuration
# -----------------------------
GAS_LIMIT_SWAP = 300_000        # default hint when a source gives none
GAS_LIMIT_UNISWAP_V4 = 250_000
GAS_LIMIT_RELAY = 500_000
GAS_LIMIT_APPROVAL = 60_000
GAS_LIMIT_CEILING = 1_000_000
GAS_LIMIT_MULTIPLIER = Decimal("1.2")

MAX_GAS_PRICE_GWEI = Decimal(os.getenv("MAX_GAS_PRICE_GWEI", "5"))
PRIORITY_FEE_GWEI = Decimal("0.001")

# Fallback native price when the oracle cannot be read
NATIVE_PRICE_USD_FALLBACK = Decimal(os.getenv("NATIVE_PRICE_USD", "3000"))
ORACLE_CACHE_TTL_SECONDS = 60
ORACLE_MAX_AGE_SECONDS = 3600

# Chainlink USD feeds on Base
CHAINLINK_FEEDS = {
    "ETH": "0x71041dddad3595F9CEd3DcCFBe3D1F4b0a16Bb70",
    "USDC": "0x7e860098F58bBFC8648a4311b374B1D669a2bc6B",
    "USDT": "0xf19d560eB8d2ADf07BD6D13ed03e1D11215721F9",
}

# -----------------------------
# Approvals
# -----------------------------
APPROVAL_HEADROOM_MULTIPLIER = 2           # approve 2x the required amount, never unbounded
PERMIT2_EXPIRATION_SECONDS = 30 * 24 * 3600
APPROVAL_POLL_ATTEMPTS = 5

# -----------------------------
# Execution & Scheduling
# -----------------------------
CONFIRMATION_TIMEOUT_SECONDS = 120
RECEIPT_POLL_SECONDS = 2.0
SETTLE_DELAY_SECONDS = 5.0
SWAP_INTERVAL_SECONDS = float(os.getenv("SWAP_INTERVAL_SECONDS", "30"))
FAILURE_DELAY_SECONDS = 10.0
MAX_CONSECUTIVE_FAILURES = 5

# -----------------------------
# Logging & Monitoring
# -----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# -----------------------------
# Deployment Mode
# -----------------------------
SIMULATION_MODE = _env_bool("SIMULATION_MODE", True)  # eth_call before sending


# -----------------------------
# Wallet Configuration
# -----------------------------
@dataclass(frozen=True)
class WalletConfig:
    private_key: str
    public_address: str = ""


def load_wallet_config() -> WalletConfig:
    """Read signing credentials from the environment."""
    private_key = os.getenv("PRIVATE_KEY")
    if not private_key:
        raise RuntimeError("PRIVATE_KEY not set in .env")
    return WalletConfig(
        private_key=private_key,
        public_address=os.getenv("PUBLIC_ADDRESS", ""),
    )
