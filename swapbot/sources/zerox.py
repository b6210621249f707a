# swapbot/sources/zerox.py
"""
0x Swap API (allowance-holder flow)
"""

import logging
from typing import Any, Dict, Optional

import httpx

from swapbot.config import (
    CHAIN_ID,
    GAS_LIMIT_SWAP,
    QUOTE_TIMEOUT_SECONDS,
    SOURCE_MIN_OUTPUT_BPS,
    ZEROX_API_KEY,
    ZEROX_BASE_URL,
)
from swapbot.sources.base import HttpQuoteSource, Quote, QuoteContext
from swapbot.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


class ZeroXSource(HttpQuoteSource):
    name = "0x"

    def __init__(
        self,
        *,
        api_key: str = ZEROX_API_KEY,
        base_url: str = ZEROX_BASE_URL,
        chain_id: int = CHAIN_ID,
        min_output_bps: int = SOURCE_MIN_OUTPUT_BPS["0x"],
        timeout_s: float = QUOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_urls=[base_url],
            min_output_bps=min_output_bps,
            timeout_s=timeout_s,
            transport=transport,
        )
        self.api_key = api_key
        self.chain_id = chain_id

        if self.enabled:
            logger.info("0x source enabled with API key")
        else:
            logger.warning("0x source disabled - no API key")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            **super()._headers(),
            "0x-api-key": self.api_key,
            "0x-version": "v2",
        }

    async def quote(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Quote:
        if not self.enabled:
            raise self.reject("API key not configured")

        params = {
            "chainId": str(self.chain_id),
            "sellToken": sell_token.address,
            "buyToken": buy_token.address,
            "sellAmount": str(sell_amount),
            "taker": context.taker,
            "slippageBps": str(context.slippage_bps),
        }

        logger.debug(f"0x quote: {sell_token.format(sell_amount)} -> {buy_token.symbol}")
        body = await self._request("GET", "/swap/allowance-holder/quote", params=params)
        return self._parse(body, sell_token, buy_token, sell_amount)

    def _parse(
        self,
        body: Dict[str, Any],
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
    ) -> Quote:
        validation = body.get("validation") or {}
        if validation.get("errors"):
            raise self.reject(f"validation errors: {validation['errors']}")

        if body.get("liquidityAvailable") is False:
            raise self.reject("no liquidity available")

        tx = body.get("transaction") or {}
        to = tx.get("to") or body.get("to")
        data = tx.get("data") or body.get("data")
        value = tx.get("value") or body.get("value") or 0
        gas = tx.get("gas") or body.get("gas") or GAS_LIMIT_SWAP

        if not to:
            raise self.reject('missing "to" address')
        if not data or data == "0x":
            raise self.reject("missing transaction data")

        buy_amount = int(body.get("buyAmount") or 0)
        if buy_amount <= 0:
            raise self.reject("zero buy amount")

        self.check_output(sell_token, buy_token, sell_amount, buy_amount)

        allowance_issue = (body.get("issues") or {}).get("allowance") or {}
        spender = allowance_issue.get("spender") or body.get("allowanceTarget") or to

        return Quote(
            source=self.name,
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            to=to,
            data=data,
            value=int(value),
            gas=int(gas),
            spender=spender,
            metadata={"zid": body.get("zid")} if body.get("zid") else {},
        )
