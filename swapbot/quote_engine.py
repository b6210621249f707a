# swapbot/quote_engine.py
"""
Multi-Source Quote Engine
Fans a swap request out to every price source and picks the quote with the
best net value after gas
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence

from swapbot.config import (
    AGGREGATE_MIN_OUTPUT_BPS,
    GAS_LIMIT_SWAP,
    QUOTE_TIMEOUT_SECONDS,
    SOURCE_PRIORITY,
)
from swapbot.errors import NoQuotesAvailable
from swapbot.filters.output_check import min_output_guard
from swapbot.gas import estimate_gas_cost
from swapbot.oracle import PriceOracle
from swapbot.sources.base import Quote, QuoteContext, QuoteSource
from swapbot.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

class FanOut(str, Enum):
    PARALLEL = "parallel"        # query all, best net value wins
    SEQUENTIAL = "sequential"    # priority order, first viable wins


@dataclass
class QuoteOutcome:
    """What one source produced for one request"""
    source: str
    quote: Optional[Quote] = None
    error: str = ""
    elapsed_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.quote is not None


@dataclass
class AggregatedQuotes:
    """Aggregated quotes from all sources"""
    sell_token: TokenDescriptor
    buy_token: TokenDescriptor
    sell_amount: int
    quotes: Dict[str, Quote] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    net_values: Dict[str, Decimal] = field(default_factory=dict)
    best_quote: Optional[Quote] = None
    spread_bps: int = 0
    timestamp: float = 0


# =============================================================================
# QUOTE AGGREGATOR
# =============================================================================

class QuoteAggregator:
    """
    Owns the source list (in priority order) and the selection policy.

    A failing source is recorded in the report and logged; it never aborts
    the request while another source can still answer.
    """

    def __init__(
        self,
        sources: Sequence[QuoteSource],
        oracle: PriceOracle,
        *,
        mode: FanOut = FanOut.PARALLEL,
        timeout_s: float = QUOTE_TIMEOUT_SECONDS,
        min_output_bps: int = AGGREGATE_MIN_OUTPUT_BPS,
        priority: Optional[Sequence[str]] = SOURCE_PRIORITY,
    ):
        self.sources: List[QuoteSource] = self._order(sources, priority)
        self.oracle = oracle
        self.mode = FanOut(mode)
        self.timeout_s = timeout_s
        self.min_output_bps = min_output_bps

    @staticmethod
    def _order(sources: Sequence[QuoteSource], priority: Optional[Sequence[str]]) -> List[QuoteSource]:
        if not priority:
            return list(sources)
        rank = {name: index for index, name in enumerate(priority)}
        # sorted() is stable, so unranked sources keep their given order
        return sorted(sources, key=lambda s: rank.get(s.name, len(rank)))

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def _fetch(
        self,
        source: QuoteSource,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> QuoteOutcome:
        timeout = min(source.timeout_s, self.timeout_s)
        start = time.monotonic()

        try:
            quote = await asyncio.wait_for(
                source.quote(sell_token, buy_token, sell_amount, context),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            error = f"timed out after {timeout:.1f}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            error = self._validate(quote, sell_token, buy_token, sell_amount)
            if not error:
                elapsed = (time.monotonic() - start) * 1000
                logger.info(f"✅ {source.name}: {quote.formatted_output} ({elapsed:.0f}ms)")
                return QuoteOutcome(source=source.name, quote=quote, elapsed_ms=elapsed)

        elapsed = (time.monotonic() - start) * 1000
        logger.warning(f"⚠️ {source.name}: {error}")
        return QuoteOutcome(source=source.name, error=error, elapsed_ms=elapsed)

    def _validate(
        self,
        quote: Quote,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
    ) -> str:
        if quote.sell_amount != sell_amount:
            return f"quoted {quote.sell_amount} instead of requested {sell_amount}"

        result = min_output_guard(
            sell_amount=sell_amount,
            buy_amount=quote.buy_amount,
            sell=sell_token,
            buy=buy_token,
            min_output_bps=self.min_output_bps,
        )
        return "" if result.ok else result.reason

    async def _collect(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> List[QuoteOutcome]:
        if self.mode == FanOut.PARALLEL:
            return list(await asyncio.gather(*(
                self._fetch(source, sell_token, buy_token, sell_amount, context)
                for source in self.sources
            )))

        outcomes = []
        for source in self.sources:
            outcome = await self._fetch(source, sell_token, buy_token, sell_amount, context)
            outcomes.append(outcome)
            if outcome.ok:
                break
        return outcomes

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    async def _attach_gas_costs(self, quotes: List[Quote], context: QuoteContext) -> None:
        native_price = await self.oracle.native_price_usd()
        for quote in quotes:
            quote.attach_gas_cost(estimate_gas_cost(
                gas_units=quote.gas or GAS_LIMIT_SWAP,
                gas_price_wei=context.gas_price_wei,
                native_price_usd=native_price,
            ))

    async def aggregate(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> AggregatedQuotes:
        """
        Query sources according to the fan-out mode and rank the results.

        Every source sees the same sell amount and context. Ties on net value
        go to the source that comes first in priority order.
        """
        report = AggregatedQuotes(
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=sell_amount,
            timestamp=time.time(),
        )

        if not self.sources:
            return report

        logger.info(
            f"🔎 Quoting {sell_token.format(sell_amount)} -> {buy_token.symbol} "
            f"({self.mode.value}, {len(self.sources)} sources)"
        )

        outcomes = await self._collect(sell_token, buy_token, sell_amount, context)

        for outcome in outcomes:
            if outcome.ok:
                report.quotes[outcome.source] = outcome.quote
            else:
                report.failures[outcome.source] = outcome.error

        if not report.quotes:
            return report

        quotes = list(report.quotes.values())
        await self._attach_gas_costs(quotes, context)
        buy_price = await self.oracle.price_usd(buy_token.symbol)

        best: Optional[Quote] = None
        best_value: Optional[Decimal] = None
        for quote in quotes:
            value = quote.net_value_usd(buy_price)
            report.net_values[quote.source] = value
            if best_value is None or value > best_value:
                best, best_value = quote, value

        report.best_quote = best

        amounts = [q.buy_amount for q in quotes]
        low, high = min(amounts), max(amounts)
        mid = (low + high) / 2
        report.spread_bps = int((high - low) / mid * 10_000) if mid > 0 else 0

        return report

    async def best_quote(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Quote:
        report = await self.aggregate(sell_token, buy_token, sell_amount, context)

        if report.best_quote is None:
            raise NoQuotesAvailable(report.failures)

        best = report.best_quote
        ranking = ", ".join(
            f"{name}=${value:.4f}"
            for name, value in sorted(report.net_values.items(), key=lambda kv: kv[1], reverse=True)
        )
        logger.info(f"🏆 BEST: {best.source} - {best.formatted_output} (net: {ranking}; spread {report.spread_bps}bps)")
        return best

    async def close(self) -> None:
        for source in self.sources:
            await source.close()
