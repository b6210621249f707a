# swapbot/sources/relay.py
"""
Relay quote API, used for same-chain swaps
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from swapbot.abis import decode_approve_spender
from swapbot.config import (
    CHAIN_ID,
    GAS_LIMIT_RELAY,
    QUOTE_TIMEOUT_SECONDS,
    RELAY_BASE_URL,
    SOURCE_MIN_OUTPUT_BPS,
)
from swapbot.sources.base import HttpQuoteSource, Quote, QuoteContext
from swapbot.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


class RelaySource(HttpQuoteSource):
    name = "relay"

    def __init__(
        self,
        *,
        base_url: str = RELAY_BASE_URL,
        chain_id: int = CHAIN_ID,
        min_output_bps: int = SOURCE_MIN_OUTPUT_BPS["relay"],
        timeout_s: float = QUOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_urls=[base_url],
            min_output_bps=min_output_bps,
            timeout_s=timeout_s,
            transport=transport,
        )
        self.chain_id = chain_id

    def _payload(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Dict[str, Any]:
        return {
            "user": context.taker,
            "recipient": context.taker,
            "originChainId": self.chain_id,
            "destinationChainId": self.chain_id,
            "originCurrency": sell_token.address,
            "destinationCurrency": buy_token.address,
            "amount": str(sell_amount),
            "tradeType": "EXACT_INPUT",
            "slippageTolerance": str(context.slippage_bps),
            "useExternalLiquidity": True,
            "useFallbacks": True,
        }

    async def quote(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Quote:
        payload = self._payload(sell_token, buy_token, sell_amount, context)
        body = await self._request("POST", "/quote", json=payload)
        return self._parse(body, sell_token, buy_token, sell_amount)

    # -------------------------------------------------------------------------
    # Response parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def _first_item(step: Dict[str, Any]) -> Dict[str, Any]:
        items = step.get("items") or []
        if not items:
            return {}
        return items[0].get("data") or {}

    def _is_approval(self, step: Dict[str, Any]) -> bool:
        if step.get("id") == "approve":
            return True
        data = self._first_item(step).get("data") or ""
        try:
            return decode_approve_spender(data) is not None
        except ValueError:
            return False

    def _executable_step(self, steps: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for step in steps:
            if step.get("kind") != "transaction" or self._is_approval(step):
                continue
            item = self._first_item(step)
            if item.get("to") and item.get("data"):
                return step
        return None

    def _approval_spender(self, steps: List[Dict[str, Any]]) -> Optional[str]:
        for step in steps:
            if step.get("kind") != "transaction":
                continue
            data = self._first_item(step).get("data") or ""
            try:
                spender = decode_approve_spender(data)
            except ValueError:
                continue
            if spender:
                return spender
        return None

    @staticmethod
    def _buy_amount(body: Dict[str, Any]) -> int:
        details = body.get("details") or {}
        candidates = [
            (details.get("currencyOut") or {}).get("amount"),
            details.get("outputAmount"),
            body.get("buyAmount"),
        ]
        for step in body.get("steps") or []:
            if step.get("id") == "swap":
                candidates.append(RelaySource._first_item(step).get("minOut"))

        for value in candidates:
            if value not in (None, "", "0", 0):
                return int(value)
        return 0

    def _parse(
        self,
        body: Dict[str, Any],
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
    ) -> Quote:
        steps = body.get("steps") or []
        if steps:
            logger.debug("Relay steps: " + ", ".join(f"{s.get('id')}({s.get('kind')})" for s in steps))

        step = self._executable_step(steps)
        if step is None:
            raise self.reject("no executable transaction step")

        tx = self._first_item(step)

        buy_amount = self._buy_amount(body)
        if buy_amount <= 0:
            raise self.reject("zero or missing output amount")

        self.check_output(sell_token, buy_token, sell_amount, buy_amount)

        return Quote(
            source=self.name,
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            to=tx["to"],
            data=tx["data"],
            value=int(tx.get("value") or 0),
            gas=int(tx.get("gas") or tx.get("gasLimit") or GAS_LIMIT_RELAY),
            spender=self._approval_spender(steps) or tx["to"],
            max_fee_per_gas=_int_or_none(tx.get("maxFeePerGas")),
            max_priority_fee_per_gas=_int_or_none(tx.get("maxPriorityFeePerGas")),
            metadata={"request_id": step.get("requestId")} if step.get("requestId") else {},
        )
