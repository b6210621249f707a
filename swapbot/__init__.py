# swapbot/__init__.py
"""
Base Alternating Swap Bot
Swaps a two-token balance back and forth at the best available price

Modules:
- config: Configuration and environment
- tokens: Token registry and unit helpers
- rpc_pool: RPC endpoint failover
- wallet: Signing, balances and submission
- sources: 0x, Relay and Uniswap V4 quote sources
- quote_engine: Multi-source quote aggregation
- approvals: Bounded ERC20 / Permit2 approvals
- executor: Swap execution and verification
- orchestrator: Swap cycle state machine
- main: Entry point
"""

__version__ = "1.0.0"
__author__ = "TradeBot"

# Core components
from swapbot.config import (
    CHAIN_ID,
    SIMULATION_MODE,
)

from swapbot.tokens import (
    USDC,
    USDT,
    TOKENS,
    DEFAULT_PAIR,
)

__all__ = [
    "CHAIN_ID",
    "SIMULATION_MODE",
    "USDC",
    "USDT",
    "TOKENS",
    "DEFAULT_PAIR",
]
