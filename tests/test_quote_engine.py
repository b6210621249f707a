"""
Tests for multi-source quote aggregation.
"""

from decimal import Decimal

import pytest

from swapbot.errors import NoQuotesAvailable, QuoteRejected
from swapbot.quote_engine import FanOut, QuoteAggregator
from swapbot.sources.base import QuoteContext

from tests.conftest import TAKER, FakeSource, USDC, USDT

SELL = 100_000_000


# =============================================================================
# PARALLEL
# =============================================================================

class TestParallelAggregation:
    """Tests for parallel fan-out"""

    @pytest.mark.asyncio
    async def test_best_output_wins_regardless_of_completion_order(self, oracle, context):
        """The slowest source has the best price and still wins"""
        sources = [
            FakeSource("uniswap_v4", 100_010_000, delay=0.02),
            FakeSource("relay", 99_970_000, delay=0),
            FakeSource("0x", 100_020_000, delay=0.05),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        report = await aggregator.aggregate(USDT, USDC, SELL, context)

        assert report.best_quote.source == "0x"
        assert set(report.quotes) == {"uniswap_v4", "relay", "0x"}
        assert report.failures == {}
        assert report.spread_bps > 0

    @pytest.mark.asyncio
    async def test_every_source_sees_same_request(self, oracle, context):
        sources = [FakeSource("relay", 99_990_000), FakeSource("0x", 99_980_000)]
        aggregator = QuoteAggregator(sources, oracle)

        await aggregator.best_quote(USDT, USDC, SELL, context)

        for source in sources:
            assert source.calls == [(USDT, USDC, SELL, context)]

    @pytest.mark.asyncio
    async def test_failures_are_recorded_not_raised(self, oracle, context):
        sources = [
            FakeSource("uniswap_v4", error=QuoteRejected("uniswap_v4", "no valid pool")),
            FakeSource("relay", error=ConnectionError("reset")),
            FakeSource("0x", 99_950_000),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        report = await aggregator.aggregate(USDT, USDC, SELL, context)

        assert report.best_quote.source == "0x"
        assert "no valid pool" in report.failures["uniswap_v4"]
        assert "reset" in report.failures["relay"]

    @pytest.mark.asyncio
    async def test_all_sources_fail(self, oracle, context):
        sources = [
            FakeSource("relay", error=ConnectionError("down")),
            FakeSource("0x", error=QuoteRejected("0x", "API key not configured")),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        with pytest.raises(NoQuotesAvailable) as exc_info:
            await aggregator.best_quote(USDT, USDC, SELL, context)

        assert set(exc_info.value.failures) == {"relay", "0x"}

    @pytest.mark.asyncio
    async def test_no_sources(self, oracle, context):
        aggregator = QuoteAggregator([], oracle)

        with pytest.raises(NoQuotesAvailable):
            await aggregator.best_quote(USDT, USDC, SELL, context)

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self, oracle, context):
        sources = [
            FakeSource("relay", 100_050_000, delay=1.0, timeout_s=0.05),
            FakeSource("0x", 99_950_000),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        report = await aggregator.aggregate(USDT, USDC, SELL, context)

        assert report.best_quote.source == "0x"
        assert "timed out" in report.failures["relay"]

    @pytest.mark.asyncio
    async def test_output_under_aggregate_floor_is_dropped(self, oracle, context):
        sources = [FakeSource("relay", 90_000_000), FakeSource("0x", 99_950_000)]
        aggregator = QuoteAggregator(sources, oracle, min_output_bps=9_500)

        report = await aggregator.aggregate(USDT, USDC, SELL, context)

        assert "relay" in report.failures
        assert report.best_quote.source == "0x"


# =============================================================================
# SCORING
# =============================================================================

class TestNetValueScoring:
    """Tests for gas-aware selection"""

    @pytest.mark.asyncio
    async def test_gas_cost_changes_winner(self, oracle):
        """
        1 gwei at 3000 USD/ETH: 300k gas costs $0.90, 10k gas costs $0.03,
        so the lower raw output wins on net value
        """
        context = QuoteContext(taker=TAKER, slippage_bps=100, gas_price_wei=10 ** 9)
        sources = [
            FakeSource("relay", 100_000_000, gas=300_000),
            FakeSource("0x", 99_990_000, gas=10_000),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        report = await aggregator.aggregate(USDT, USDC, SELL, context)

        assert report.best_quote.source == "0x"
        assert report.net_values["relay"] == Decimal("99.1")
        assert report.net_values["0x"] == Decimal("99.96")
        assert report.quotes["relay"].gas_cost.gas_cost_usd == Decimal("0.9")

    @pytest.mark.asyncio
    async def test_tie_goes_to_priority_order(self, oracle, context):
        sources = [
            FakeSource("0x", 99_990_000),
            FakeSource("relay", 99_990_000),
            FakeSource("uniswap_v4", 99_990_000),
        ]
        aggregator = QuoteAggregator(sources, oracle)

        quote = await aggregator.best_quote(USDT, USDC, SELL, context)

        assert [s.name for s in aggregator.sources] == ["uniswap_v4", "relay", "0x"]
        assert quote.source == "uniswap_v4"


# =============================================================================
# SEQUENTIAL
# =============================================================================

class TestSequentialAggregation:
    """Tests for sequential fan-out"""

    @pytest.mark.asyncio
    async def test_stops_at_first_viable_source(self, oracle, context):
        sources = [
            FakeSource("uniswap_v4", error=QuoteRejected("uniswap_v4", "no valid pool")),
            FakeSource("relay", 99_900_000),
            FakeSource("0x", 100_050_000),
        ]
        aggregator = QuoteAggregator(sources, oracle, mode=FanOut.SEQUENTIAL)

        quote = await aggregator.best_quote(USDT, USDC, SELL, context)

        assert quote.source == "relay"
        assert len(sources[2].calls) == 0

    @pytest.mark.asyncio
    async def test_all_fail_sequentially(self, oracle, context):
        sources = [FakeSource("relay", error=ConnectionError("a")), FakeSource("0x", error=ConnectionError("b"))]
        aggregator = QuoteAggregator(sources, oracle, mode="sequential")

        with pytest.raises(NoQuotesAvailable):
            await aggregator.best_quote(USDT, USDC, SELL, context)

        assert all(len(s.calls) == 1 for s in sources)
