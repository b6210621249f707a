"""
Tests for the 0x, Relay and Uniswap V4 quote sources.

HTTP sources run against httpx.MockTransport; the V4 source overrides its
per-tier quoter call.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest
from web3.exceptions import ContractLogicError

from swapbot.abis import encode_approve
from swapbot.config import GAS_LIMIT_RELAY, GAS_LIMIT_UNISWAP_V4, PERMIT2
from swapbot.errors import QuoteRejected, TransportFailure
from swapbot.sources import RelaySource, UniswapV4Source, ZeroXSource
from swapbot.sources.uniswap_v4 import PoolKey

from tests.conftest import ROUTER, SPENDER, USDC, USDT


def transport_for(handler, seen=None):
    def _handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)
    return httpx.MockTransport(_handler)


def json_response(body, status=200):
    return lambda request: httpx.Response(status, json=body)


# =============================================================================
# 0x
# =============================================================================

class TestZeroXSource:
    """Tests for the 0x allowance-holder source"""

    @pytest.fixture
    def zerox_body(self):
        return {
            "liquidityAvailable": True,
            "buyAmount": "99950000",
            "transaction": {"to": ROUTER, "data": "0xabcdef", "value": "0", "gas": "180000"},
            "issues": {"allowance": {"spender": SPENDER, "actual": "0"}},
        }

    @pytest.mark.asyncio
    async def test_parses_quote_and_sends_headers(self, zerox_body, context):
        seen = []
        source = ZeroXSource(api_key="key", transport=transport_for(json_response(zerox_body), seen))

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.source == "0x"
        assert quote.buy_amount == 99_950_000
        assert quote.to == ROUTER
        assert quote.gas == 180_000
        assert quote.spender == SPENDER

        request = seen[0]
        assert request.url.path == "/swap/allowance-holder/quote"
        assert request.headers["0x-api-key"] == "key"
        assert request.headers["0x-version"] == "v2"
        assert request.url.params["sellAmount"] == "100000000"
        assert request.url.params["slippageBps"] == "100"

    @pytest.mark.asyncio
    async def test_missing_api_key_rejects_without_request(self, context):
        seen = []
        source = ZeroXSource(api_key="", transport=transport_for(json_response({}), seen))

        with pytest.raises(QuoteRejected, match="API key"):
            await source.quote(USDT, USDC, 100_000_000, context)

        assert seen == []

    @pytest.mark.asyncio
    async def test_output_below_minimum_is_rejected(self, zerox_body, context):
        """98.9 USDC for 100 USDT is under the 99% floor"""
        zerox_body["buyAmount"] = "98900000"
        source = ZeroXSource(api_key="key", min_output_bps=9_900,
                             transport=transport_for(json_response(zerox_body)))

        with pytest.raises(QuoteRejected, match="minimum"):
            await source.quote(USDT, USDC, 100_000_000, context)

    @pytest.mark.asyncio
    async def test_no_liquidity(self, context):
        source = ZeroXSource(api_key="key",
                             transport=transport_for(json_response({"liquidityAvailable": False})))

        with pytest.raises(QuoteRejected, match="liquidity"):
            await source.quote(USDT, USDC, 100_000_000, context)

    @pytest.mark.asyncio
    async def test_spender_falls_back_to_allowance_target(self, zerox_body, context):
        del zerox_body["issues"]
        zerox_body["allowanceTarget"] = SPENDER
        source = ZeroXSource(api_key="key", transport=transport_for(json_response(zerox_body)))

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.spender == SPENDER

    @pytest.mark.asyncio
    async def test_client_error_becomes_rejection(self, context):
        source = ZeroXSource(api_key="key",
                             transport=transport_for(json_response({"reason": "bad"}, status=400)))

        with pytest.raises(QuoteRejected, match="HTTP 400"):
            await source.quote(USDT, USDC, 100_000_000, context)

    @pytest.mark.asyncio
    async def test_server_error_becomes_transport_failure(self, context):
        source = ZeroXSource(api_key="key",
                             transport=transport_for(json_response({}, status=503)))

        with pytest.raises(TransportFailure):
            await source.quote(USDT, USDC, 100_000_000, context)


# =============================================================================
# RELAY
# =============================================================================

class TestRelaySource:
    """Tests for the Relay source"""

    @pytest.fixture
    def approve_step(self):
        return {
            "id": "approve",
            "kind": "transaction",
            "items": [{"data": {"to": USDT.address, "data": encode_approve(SPENDER, 100_000_000)}}],
        }

    @pytest.fixture
    def swap_step(self):
        return {
            "id": "swap",
            "kind": "transaction",
            "requestId": "0xreq",
            "items": [{"data": {
                "to": ROUTER,
                "data": "0x12345678",
                "value": "0",
                "maxFeePerGas": "2000000",
                "maxPriorityFeePerGas": "1000000",
            }}],
        }

    @pytest.mark.asyncio
    async def test_skips_approval_step(self, approve_step, swap_step, context):
        body = {
            "steps": [approve_step, swap_step],
            "details": {"currencyOut": {"amount": "99970000"}},
        }
        seen = []
        source = RelaySource(transport=transport_for(json_response(body), seen))

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.to == ROUTER
        assert quote.data == "0x12345678"
        assert quote.spender.lower() == SPENDER.lower()
        assert quote.buy_amount == 99_970_000
        assert quote.gas == GAS_LIMIT_RELAY
        assert quote.max_fee_per_gas == 2_000_000
        assert quote.metadata["request_id"] == "0xreq"

        payload = json.loads(seen[0].content)
        assert payload["tradeType"] == "EXACT_INPUT"
        assert payload["amount"] == "100000000"
        assert payload["slippageTolerance"] == "100"

    @pytest.mark.asyncio
    async def test_spender_defaults_to_swap_target(self, swap_step, context):
        body = {"steps": [swap_step], "details": {"outputAmount": "99970000"}}
        source = RelaySource(transport=transport_for(json_response(body)))

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.spender == ROUTER

    @pytest.mark.asyncio
    async def test_only_approval_step_is_rejected(self, approve_step, context):
        body = {"steps": [approve_step], "details": {"currencyOut": {"amount": "99970000"}}}
        source = RelaySource(transport=transport_for(json_response(body)))

        with pytest.raises(QuoteRejected, match="no executable"):
            await source.quote(USDT, USDC, 100_000_000, context)

    @pytest.mark.asyncio
    async def test_missing_output_amount(self, swap_step, context):
        body = {"steps": [swap_step], "details": {}}
        source = RelaySource(transport=transport_for(json_response(body)))

        with pytest.raises(QuoteRejected, match="output amount"):
            await source.quote(USDT, USDC, 100_000_000, context)


# =============================================================================
# UNISWAP V4
# =============================================================================

class ScriptedV4Source(UniswapV4Source):
    """V4 source with quoter answers keyed by fee tier"""

    def __init__(self, answers, **kwargs):
        kwargs.setdefault("fee_tiers", {100: 1, 500: 10, 3000: 60})
        super().__init__(MagicMock(), clock=lambda: 1_700_000_000, **kwargs)
        self.answers = answers
        self.tiers_seen = []

    async def _quote_tier(self, pool_key, zero_for_one, amount_in):
        self.tiers_seen.append((pool_key.fee, zero_for_one))
        answer = self.answers[pool_key.fee]
        if isinstance(answer, Exception):
            raise answer
        return answer, 90_000


class TestPoolKey:
    def test_currencies_are_sorted(self):
        key = PoolKey.for_pair(USDT.address, USDC.address, 100, 1)

        assert int(key.currency0, 16) < int(key.currency1, 16)
        assert key.currency0 == USDC.address


class TestUniswapV4Source:
    """Tests for tier selection and calldata"""

    @pytest.mark.asyncio
    async def test_picks_best_tier(self, context):
        source = ScriptedV4Source({100: 99_980_000, 500: 99_990_000, 3000: 99_700_000})

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.buy_amount == 99_990_000
        assert quote.metadata["fee"] == 500
        assert quote.metadata["min_amount_out"] == 99_990_000 * 9_900 // 10_000
        assert quote.gas == GAS_LIMIT_UNISWAP_V4
        assert quote.spender.lower() == PERMIT2.lower()
        assert quote.permit2_spender == source.router
        assert quote.data.startswith("0x3593564c")

    @pytest.mark.asyncio
    async def test_direction_sets_zero_for_one(self, context):
        """USDC sorts first, so selling USDT is oneForZero"""
        source = ScriptedV4Source({100: 99_980_000, 500: 1, 3000: 1})

        await source.quote(USDT, USDC, 100_000_000, context)
        await source.quote(USDC, USDT, 100_000_000, context)

        assert source.tiers_seen[0] == (100, False)
        assert source.tiers_seen[3] == (100, True)

    @pytest.mark.asyncio
    async def test_reverting_tiers_are_skipped(self, context):
        source = ScriptedV4Source({
            100: ContractLogicError("pool not initialized"),
            500: 99_900_000,
            3000: ContractLogicError("pool not initialized"),
        })

        quote = await source.quote(USDT, USDC, 100_000_000, context)

        assert quote.metadata["fee"] == 500

    @pytest.mark.asyncio
    async def test_all_tiers_revert(self, context):
        error = ContractLogicError("no pool")
        source = ScriptedV4Source({100: error, 500: error, 3000: error})

        with pytest.raises(QuoteRejected, match="no valid pool"):
            await source.quote(USDT, USDC, 100_000_000, context)

    @pytest.mark.asyncio
    async def test_below_min_notional(self, context):
        source = ScriptedV4Source({100: 1, 500: 1, 3000: 1}, min_notional=Decimal("1"))

        with pytest.raises(QuoteRejected, match="minimum notional"):
            await source.quote(USDT, USDC, 500_000, context)

        assert source.tiers_seen == []
