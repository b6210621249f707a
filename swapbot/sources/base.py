# swapbot/sources/base.py
"""
Quote Source Interface
A Quote is an executable transaction proposal from one price source
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from swapbot.config import QUOTE_HTTP_ATTEMPTS, QUOTE_TIMEOUT_SECONDS, SLIPPAGE_BPS
from swapbot.errors import QuoteRejected, TransportFailure
from swapbot.filters.output_check import min_output_guard
from swapbot.gas import GasCost
from swapbot.retry import BackoffPolicy, retry_async
from swapbot.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class QuoteContext:
    """Inputs shared by every source within one cycle"""
    taker: str
    slippage_bps: int = SLIPPAGE_BPS
    gas_price_wei: int = 0


@dataclass
class Quote:
    source: str
    sell_token: TokenDescriptor
    buy_token: TokenDescriptor
    sell_amount: int
    buy_amount: int
    to: str
    data: str
    value: int = 0
    gas: int = 0                                  # hint in gas units, 0 = unknown
    spender: Optional[str] = None                 # ERC20 spender to approve
    permit2_spender: Optional[str] = None         # Permit2-level spender, if any
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    gas_cost: Optional[GasCost] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.buy_amount <= 0:
            raise ValueError(f"{self.source} quote has non-positive buy amount {self.buy_amount}")

    def attach_gas_cost(self, gas_cost: GasCost) -> None:
        if self.gas_cost is not None:
            raise ValueError(f"{self.source} quote already has a gas cost")
        self.gas_cost = gas_cost

    @property
    def formatted_output(self) -> str:
        return self.buy_token.format(self.buy_amount)

    def buy_value_usd(self, buy_price_usd: Decimal) -> Decimal:
        return self.buy_token.from_units(self.buy_amount) * buy_price_usd

    def net_value_usd(self, buy_price_usd: Decimal) -> Decimal:
        """Buy amount in USD minus gas cost in USD (gas counts as zero if unknown)"""
        gas_usd = self.gas_cost.gas_cost_usd if self.gas_cost else Decimal(0)
        return self.buy_value_usd(buy_price_usd) - gas_usd

    def to_tx(self) -> Dict[str, Any]:
        tx = {"to": self.to, "data": self.data, "value": self.value, "gas": self.gas}
        if self.max_fee_per_gas:
            tx["maxFeePerGas"] = self.max_fee_per_gas
            if self.max_priority_fee_per_gas:
                tx["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        return tx


# =============================================================================
# SOURCE INTERFACE
# =============================================================================

class QuoteSource(ABC):
    """One price provider; `quote` either returns a valid Quote or raises"""

    name: str = "source"

    def __init__(self, *, min_output_bps: int, timeout_s: float = QUOTE_TIMEOUT_SECONDS):
        self.min_output_bps = min_output_bps
        self.timeout_s = timeout_s

    @abstractmethod
    async def quote(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Quote:
        ...

    def reject(self, reason: str) -> QuoteRejected:
        return QuoteRejected(self.name, reason)

    def check_output(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        buy_amount: int,
    ) -> None:
        result = min_output_guard(
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            sell=sell_token,
            buy=buy_token,
            min_output_bps=self.min_output_bps,
        )
        if not result.ok:
            raise self.reject(result.reason)

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class HttpQuoteSource(QuoteSource):
    """
    Source backed by a JSON HTTP API.

    Each base URL is tried in order; connection errors are retried with a
    fixed backoff, HTTP 4xx answers become QuoteRejected.
    """

    def __init__(
        self,
        *,
        base_urls: List[str],
        min_output_bps: int,
        timeout_s: float = QUOTE_TIMEOUT_SECONDS,
        attempts: int = QUOTE_HTTP_ATTEMPTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(min_output_bps=min_output_bps, timeout_s=timeout_s)
        self.base_urls = [url.rstrip("/") for url in base_urls]
        self.attempts = attempts
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
        }

    async def _request_once(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        last_error: Optional[Exception] = None

        for index, base_url in enumerate(self.base_urls):
            try:
                async with httpx.AsyncClient(
                    base_url=base_url, timeout=self.timeout_s, transport=self._transport
                ) as client:
                    response = await client.request(
                        method, path, params=params, json=json, headers=self._headers()
                    )
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code in (404, 405) and index < len(self.base_urls) - 1:
                    last_error = exc
                    continue
                raise
            except httpx.RequestError as exc:
                last_error = exc
                continue

        if last_error is not None:
            raise last_error
        raise RuntimeError(f"{self.name}: no base URL configured")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            return await retry_async(
                lambda: self._request_once(method, path, params=params, json=json),
                max_attempts=self.attempts,
                backoff=BackoffPolicy(initial=1.0, multiplier=1.0, maximum=1.0),
                retryable=(httpx.RequestError,),
                label=f"{self.name} {method} {path}",
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                raise TransportFailure(f"{self.name}: HTTP {status}", last_error=exc) from exc
            raise self.reject(f"HTTP {status}: {exc.response.text[:200]}") from exc
        except httpx.RequestError as exc:
            raise TransportFailure(f"{self.name}: {exc}", last_error=exc) from exc
