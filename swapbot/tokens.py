# swapbot/tokens.py
"""
Token Registry for Base
The two assets the bot alternates between, plus unit helpers
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from web3 import Web3

# =============================================================================
# TOKEN ADDRESSES (Base Mainnet - All Checksummed)
# =============================================================================

USDT = Web3.to_checksum_address("0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2")
USDC = Web3.to_checksum_address("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# =============================================================================
# TOKEN METADATA
# =============================================================================

@dataclass(frozen=True)
class TokenDescriptor:
    symbol: str
    address: str
    decimals: int

    def from_units(self, amount: int) -> Decimal:
        return from_units(amount, self.decimals)

    def format(self, amount: int) -> str:
        return f"{self.from_units(amount):f} {self.symbol}"


TOKENS: Dict[str, TokenDescriptor] = {
    "USDT": TokenDescriptor("USDT", USDT, 6),
    "USDC": TokenDescriptor("USDC", USDC, 6),
}

# Default pair: first swap sells USDT for USDC
DEFAULT_PAIR = ("USDT", "USDC")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_token(symbol: str) -> TokenDescriptor:
    """Get token descriptor by symbol"""
    token = TOKENS.get(symbol.upper())
    if token is None:
        raise KeyError(f"Unknown token: {symbol}")
    return token


def from_units(amount: int, decimals: int) -> Decimal:
    """Smallest unit -> human amount"""
    return Decimal(amount) / (Decimal(10) ** decimals)


def naive_output(sell_amount: int, sell: TokenDescriptor, buy: TokenDescriptor) -> int:
    """1:1 estimate of the buy amount, adjusted for decimals"""
    if buy.decimals >= sell.decimals:
        return sell_amount * 10 ** (buy.decimals - sell.decimals)
    return sell_amount // 10 ** (sell.decimals - buy.decimals)
