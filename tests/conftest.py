"""
Shared fakes for the swap engine tests.

FakeWallet stands in for the signing wallet (no RPC); FakeSource is a
scriptable price source.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import decode

from swapbot.abis import APPROVE_SELECTOR, PERMIT2_APPROVE_SELECTOR
from swapbot.oracle import StaticPriceOracle
from swapbot.sources.base import Quote, QuoteContext, QuoteSource
from swapbot.tokens import TOKENS

TAKER = "0x1111111111111111111111111111111111111111"
ROUTER = "0x2222222222222222222222222222222222222222"
SPENDER = "0x3333333333333333333333333333333333333333"

USDT = TOKENS["USDT"]
USDC = TOKENS["USDC"]


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def make_quote(source: str, buy_amount: int, sell_amount: int = 100_000_000, *, gas: int = 200_000,
               sell=USDT, buy=USDC, spender: Optional[str] = SPENDER, **kwargs) -> Quote:
    return Quote(
        source=source,
        sell_token=sell,
        buy_token=buy,
        sell_amount=sell_amount,
        buy_amount=buy_amount,
        to=ROUTER,
        data="0xdeadbeef",
        gas=gas,
        spender=spender,
        **kwargs,
    )


class FakeWallet:
    """In-memory wallet: balances, allowances and a log of sent transactions"""

    def __init__(self, balances: Optional[Dict[str, int]] = None, gas_price: int = 10 ** 7):
        self.address = TAKER
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.allowances: Dict[tuple, int] = {}
        self.permit2_grants: Dict[tuple, tuple] = {}
        self.sent: List[Dict[str, Any]] = []
        self.statuses: List[int] = []          # receipt statuses to hand out, default 1
        self.calls: List[Dict[str, Any]] = []
        self.call_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.on_swap = None                    # callback(tx) for non-approval sends
        self.allowance_reads = 0
        self._gas_price = gas_price

    async def token_balance(self, token: str) -> int:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(token.lower(), 0)

    async def native_balance(self) -> int:
        return 10 ** 16

    async def allowance(self, token: str, spender: str) -> int:
        self.allowance_reads += 1
        return self.allowances.get((token.lower(), spender.lower()), 0)

    async def permit2_allowance(self, token: str, spender: str):
        return self.permit2_grants.get((token.lower(), spender.lower()), (0, 0, 0))

    async def gas_price(self) -> int:
        return self._gas_price

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return 150_000

    async def call(self, tx: Dict[str, Any]) -> bytes:
        self.calls.append(tx)
        if self.call_error is not None:
            raise self.call_error
        return b""

    def _apply(self, tx: Dict[str, Any]) -> None:
        raw = bytes.fromhex(tx["data"][2:])
        if raw[:4] == APPROVE_SELECTOR:
            spender, amount = decode(["address", "uint256"], raw[4:])
            self.allowances[(tx["to"].lower(), spender.lower())] = amount
        elif raw[:4] == PERMIT2_APPROVE_SELECTOR:
            token, spender, amount, expiration = decode(["address", "address", "uint160", "uint48"], raw[4:])
            self.permit2_grants[(token.lower(), spender.lower())] = (amount, expiration, 0)
        elif self.on_swap is not None:
            self.on_swap(tx)

    async def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append(dict(tx))
        # let concurrent callers interleave
        await asyncio.sleep(0)
        status = self.statuses.pop(0) if self.statuses else 1
        if status == 1:
            self._apply(tx)
        return {
            "status": status,
            "transactionHash": "0x" + f"{len(self.sent):064x}",
            "gasUsed": 120_000,
            "effectiveGasPrice": self._gas_price,
        }


class FakeSource(QuoteSource):
    """Price source returning a fixed buy amount after an optional delay"""

    def __init__(self, name: str, buy_amount: int = 0, *, delay: float = 0, error: Optional[Exception] = None,
                 gas: int = 200_000, timeout_s: float = 10):
        super().__init__(min_output_bps=0, timeout_s=timeout_s)
        self.name = name
        self.buy_amount = buy_amount
        self.delay = delay
        self.error = error
        self.gas = gas
        self.calls = []

    async def quote(self, sell_token, buy_token, sell_amount, context: QuoteContext) -> Quote:
        self.calls.append((sell_token, buy_token, sell_amount, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_quote(self.name, self.buy_amount, sell_amount, gas=self.gas,
                          sell=sell_token, buy=buy_token)


@pytest.fixture
def wallet():
    return FakeWallet(balances={USDT.address: 101_010_102, USDC.address: 5_000_000})


@pytest.fixture
def oracle():
    return StaticPriceOracle({"ETH": Decimal("3000")})


@pytest.fixture
def context():
    return QuoteContext(taker=TAKER, slippage_bps=100, gas_price_wei=10 ** 7)
