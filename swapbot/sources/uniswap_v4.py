# swapbot/sources/uniswap_v4.py
"""
Uniswap V4 on-chain quoting
Tries each fee tier through the V4 Quoter, encodes the best one as a
Universal Router V4_SWAP
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from eth_abi import encode
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from swapbot.abis import (
    SETTLE_ALL,
    SWAP_EXACT_IN_SINGLE,
    TAKE_ALL,
    V4_QUOTER_ABI,
    V4_SWAP,
    encode_execute,
)
from swapbot.config import (
    GAS_LIMIT_UNISWAP_V4,
    PERMIT2,
    QUOTE_TIMEOUT_SECONDS,
    SOURCE_MIN_OUTPUT_BPS,
    UNISWAP_DEADLINE_SECONDS,
    UNISWAP_FEE_TIERS,
    UNISWAP_MIN_NOTIONAL,
    UNIVERSAL_ROUTER,
    V4_QUOTER,
)
from swapbot.rpc_pool import RPCPool
from swapbot.sources.base import Quote, QuoteContext, QuoteSource
from swapbot.tokens import ZERO_ADDRESS, TokenDescriptor

logger = logging.getLogger(__name__)

POOL_KEY_TYPE = "(address,address,uint24,int24,address)"
EXACT_IN_SINGLE_TYPE = f"({POOL_KEY_TYPE},bool,uint128,uint128,bytes)"


@dataclass(frozen=True)
class PoolKey:
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str = ZERO_ADDRESS

    @classmethod
    def for_pair(cls, token_a: str, token_b: str, fee: int, tick_spacing: int) -> "PoolKey":
        """Currencies are ordered by address, as the PoolManager requires"""
        a, b = Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
        if int(a, 16) > int(b, 16):
            a, b = b, a
        return cls(a, b, fee, tick_spacing)

    def as_tuple(self) -> Tuple[str, str, int, int, str]:
        return (self.currency0, self.currency1, self.fee, self.tick_spacing, self.hooks)


@dataclass(frozen=True)
class TierQuote:
    pool_key: PoolKey
    zero_for_one: bool
    amount_out: int
    gas_estimate: int


class UniswapV4Source(QuoteSource):
    name = "uniswap_v4"

    def __init__(
        self,
        pool: RPCPool,
        *,
        quoter: str = V4_QUOTER,
        router: str = UNIVERSAL_ROUTER,
        fee_tiers: Optional[Dict[int, int]] = None,
        min_notional: Decimal = UNISWAP_MIN_NOTIONAL,
        deadline_s: int = UNISWAP_DEADLINE_SECONDS,
        min_output_bps: int = SOURCE_MIN_OUTPUT_BPS["uniswap_v4"],
        timeout_s: float = QUOTE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(min_output_bps=min_output_bps, timeout_s=timeout_s)
        self.pool = pool
        self.quoter = Web3.to_checksum_address(quoter)
        self.router = Web3.to_checksum_address(router)
        self.fee_tiers = dict(fee_tiers if fee_tiers is not None else UNISWAP_FEE_TIERS)
        self.min_notional = min_notional
        self.deadline_s = deadline_s
        self._clock = clock

    async def _quote_tier(self, pool_key: PoolKey, zero_for_one: bool, amount_in: int) -> Tuple[int, int]:
        """(amountOut, gasEstimate) from the V4 Quoter; reverts if the pool is unusable"""
        params = (pool_key.as_tuple(), zero_for_one, amount_in, b"")

        async def _call(w3: AsyncWeb3):
            quoter = w3.eth.contract(address=self.quoter, abi=V4_QUOTER_ABI)
            return await quoter.functions.quoteExactInputSingle(params).call()

        amount_out, gas_estimate = await self.pool.with_failover(_call, label=f"v4 quote fee={pool_key.fee}")
        return int(amount_out), int(gas_estimate)

    async def best_tier(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
    ) -> Optional[TierQuote]:
        best: Optional[TierQuote] = None

        for fee, tick_spacing in self.fee_tiers.items():
            pool_key = PoolKey.for_pair(sell_token.address, buy_token.address, fee, tick_spacing)
            zero_for_one = Web3.to_checksum_address(sell_token.address) == pool_key.currency0

            try:
                amount_out, gas_estimate = await self._quote_tier(pool_key, zero_for_one, sell_amount)
            except ContractLogicError as e:
                logger.debug(f"V4 fee {fee} skipped: {e}")
                continue

            logger.debug(f"V4 fee {fee} quoted: {buy_token.format(amount_out)}")
            if amount_out > 0 and (best is None or amount_out > best.amount_out):
                best = TierQuote(pool_key, zero_for_one, amount_out, gas_estimate)

        return best

    def encode_swap(self, tier: TierQuote, sell_token: TokenDescriptor, buy_token: TokenDescriptor,
                    amount_in: int, min_amount_out: int) -> str:
        """Universal Router execute() calldata for a single-pool exact-input V4 swap"""
        actions = bytes([SWAP_EXACT_IN_SINGLE, SETTLE_ALL, TAKE_ALL])
        params = [
            encode(
                [EXACT_IN_SINGLE_TYPE],
                [(tier.pool_key.as_tuple(), tier.zero_for_one, amount_in, min_amount_out, b"")],
            ),
            encode(["address", "uint256"], [Web3.to_checksum_address(sell_token.address), amount_in]),
            encode(["address", "uint256"], [Web3.to_checksum_address(buy_token.address), min_amount_out]),
        ]
        swap_input = encode(["bytes", "bytes[]"], [actions, params])
        deadline = int(self._clock()) + self.deadline_s
        return encode_execute(bytes([V4_SWAP]), [swap_input], deadline)

    async def quote(
        self,
        sell_token: TokenDescriptor,
        buy_token: TokenDescriptor,
        sell_amount: int,
        context: QuoteContext,
    ) -> Quote:
        if sell_token.from_units(sell_amount) < self.min_notional:
            raise self.reject(f"amount below minimum notional {self.min_notional} {sell_token.symbol}")

        tier = await self.best_tier(sell_token, buy_token, sell_amount)
        if tier is None:
            raise self.reject("no valid pool for any fee tier")

        self.check_output(sell_token, buy_token, sell_amount, tier.amount_out)

        min_amount_out = tier.amount_out * (10_000 - context.slippage_bps) // 10_000
        data = self.encode_swap(tier, sell_token, buy_token, sell_amount, min_amount_out)

        logger.info(f"Uniswap V4: {buy_token.format(tier.amount_out)} (fee {tier.pool_key.fee})")

        return Quote(
            source=self.name,
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=sell_amount,
            buy_amount=tier.amount_out,
            to=self.router,
            data=data,
            value=0,
            gas=GAS_LIMIT_UNISWAP_V4,
            spender=Web3.to_checksum_address(PERMIT2),
            permit2_spender=self.router,
            metadata={
                "fee": tier.pool_key.fee,
                "tick_spacing": tier.pool_key.tick_spacing,
                "min_amount_out": min_amount_out,
                "quoter_gas_estimate": tier.gas_estimate,
            },
        )
