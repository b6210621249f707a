# swapbot/sources/__init__.py
"""Price sources: two HTTP aggregators and one on-chain pool quoter"""

from swapbot.sources.base import HttpQuoteSource, Quote, QuoteContext, QuoteSource
from swapbot.sources.relay import RelaySource
from swapbot.sources.uniswap_v4 import UniswapV4Source
from swapbot.sources.zerox import ZeroXSource

__all__ = [
    "HttpQuoteSource",
    "Quote",
    "QuoteContext",
    "QuoteSource",
    "RelaySource",
    "UniswapV4Source",
    "ZeroXSource",
]
