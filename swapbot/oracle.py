# swapbot/oracle.py
"""
Price Oracle
Converts gas (native units) and token amounts into USD so quotes from
different sources can be compared on net value
"""

import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from web3 import AsyncWeb3, Web3

from swapbot.abis import CHAINLINK_ABI
from swapbot.config import (
    CHAINLINK_FEEDS,
    NATIVE_PRICE_USD_FALLBACK,
    NATIVE_SYMBOL,
    ORACLE_CACHE_TTL_SECONDS,
    ORACLE_MAX_AGE_SECONDS,
)
from swapbot.errors import SwapBotError
from swapbot.rpc_pool import RPCPool

logger = logging.getLogger(__name__)

# Used when a feed is missing and no override exists
DEFAULT_PRICES = {
    NATIVE_SYMBOL: NATIVE_PRICE_USD_FALLBACK,
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
}


class StaleOraclePrice(SwapBotError):
    pass


class PriceOracle(ABC):
    """USD price per whole unit of an asset"""

    @abstractmethod
    async def price_usd(self, symbol: str) -> Decimal:
        ...

    async def native_price_usd(self) -> Decimal:
        return await self.price_usd(NATIVE_SYMBOL)


class StaticPriceOracle(PriceOracle):
    """Fixed prices; unknown symbols are worth 1 USD"""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices = dict(DEFAULT_PRICES)
        self.prices.update({k.upper(): Decimal(v) for k, v in (prices or {}).items()})

    async def price_usd(self, symbol: str) -> Decimal:
        return self.prices.get(symbol.upper(), Decimal("1"))


class ChainlinkPriceOracle(PriceOracle):
    """
    Chainlink USD feeds read through the RPC pool, cached per symbol.

    A missing feed, a failed read or a stale answer falls back to the static
    default for that symbol, so gas scoring always has a number to use.
    """

    def __init__(
        self,
        pool: RPCPool,
        feeds: Optional[Dict[str, str]] = None,
        *,
        fallback: Optional[PriceOracle] = None,
        cache_ttl: float = ORACLE_CACHE_TTL_SECONDS,
        max_age: float = ORACLE_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.pool = pool
        self.feeds = {k.upper(): v for k, v in (feeds if feeds is not None else CHAINLINK_FEEDS).items()}
        self.fallback = fallback or StaticPriceOracle()
        self.cache_ttl = cache_ttl
        self.max_age = max_age
        self._clock = clock
        self._cache: Dict[str, Tuple[Decimal, float]] = {}

    async def price_usd(self, symbol: str) -> Decimal:
        symbol = symbol.upper()
        now = self._clock()

        cached = self._cache.get(symbol)
        if cached and now - cached[1] < self.cache_ttl:
            return cached[0]

        feed_address = self.feeds.get(symbol)
        if not feed_address:
            return await self.fallback.price_usd(symbol)

        try:
            price = await self._read_feed(feed_address, now)
        except Exception as e:
            fallback = await self.fallback.price_usd(symbol)
            logger.warning(f"⚠️ Chainlink {symbol}/USD unavailable ({e}), using {fallback}")
            return fallback

        self._cache[symbol] = (price, now)
        return price

    async def _read_feed(self, feed_address: str, now: float) -> Decimal:
        async def _read(w3: AsyncWeb3):
            feed = w3.eth.contract(address=Web3.to_checksum_address(feed_address), abi=CHAINLINK_ABI)
            _, answer, _, updated_at, _ = await feed.functions.latestRoundData().call()
            decimals = await feed.functions.decimals().call()
            return answer, updated_at, decimals

        answer, updated_at, decimals = await self.pool.with_failover(_read, label="chainlink.latestRoundData")

        if now - updated_at > self.max_age:
            raise StaleOraclePrice(f"answer is {int(now - updated_at)}s old")
        if answer <= 0:
            raise StaleOraclePrice(f"non-positive answer {answer}")

        return Decimal(answer) / Decimal(10 ** decimals)
