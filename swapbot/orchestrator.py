# swapbot/orchestrator.py
"""
Swap Orchestrator
One cycle = size the trade, quote, approve, execute, verify, then flip direction
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from swapbot.approvals import ApprovalManager
from swapbot.config import (
    BALANCE_USAGE_BPS,
    MAX_GAS_PRICE_GWEI,
    MIN_SWAP_AMOUNT,
    SLIPPAGE_BPS,
)
from swapbot.errors import (
    CycleInProgress,
    GasPriceTooHigh,
    InsufficientBalance,
    TransactionReverted,
    TransactionTimeout,
)
from swapbot.executor import SwapExecutor, SwapResult
from swapbot.filters.gas_check import gas_price_guard
from swapbot.quote_engine import QuoteAggregator
from swapbot.sources.base import Quote, QuoteContext
from swapbot.tokens import TokenDescriptor
from swapbot.wallet import Wallet

logger = logging.getLogger(__name__)


# =============================================================================
# DIRECTION
# =============================================================================

class Direction(Enum):
    A_TO_B = "a_to_b"
    B_TO_A = "b_to_a"

    def flipped(self) -> "Direction":
        return Direction.B_TO_A if self is Direction.A_TO_B else Direction.A_TO_B


class DirectionAlternator:
    """Maps the current direction onto (sell, buy) tokens of the pair"""

    def __init__(self, token_a: TokenDescriptor, token_b: TokenDescriptor, start: Direction = Direction.A_TO_B):
        if token_a.address.lower() == token_b.address.lower():
            raise ValueError("alternating pair needs two distinct tokens")
        self.token_a = token_a
        self.token_b = token_b
        self.direction = start

    def legs(self, direction: Optional[Direction] = None) -> Tuple[TokenDescriptor, TokenDescriptor]:
        direction = direction or self.direction
        if direction is Direction.A_TO_B:
            return self.token_a, self.token_b
        return self.token_b, self.token_a

    def label(self, direction: Optional[Direction] = None) -> str:
        sell, buy = self.legs(direction)
        return f"{sell.symbol}_TO_{buy.symbol}"

    def flip(self) -> Direction:
        self.direction = self.direction.flipped()
        return self.direction


# =============================================================================
# CYCLE STATE
# =============================================================================

class CycleStage(Enum):
    IDLE = "idle"
    COMPUTING_AMOUNT = "computing_amount"
    QUOTING = "quoting"
    APPROVING = "approving"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    FAILED = "failed"


@dataclass
class SwapCycleState:
    swap_count: int = 0
    direction: Direction = Direction.A_TO_B
    last_gas_price: int = 0
    stage: CycleStage = CycleStage.IDLE
    last_error: str = ""


@dataclass
class CycleResult:
    swap_number: int
    direction: Direction
    sell_token: TokenDescriptor
    buy_token: TokenDescriptor
    sell_amount: int
    quote: Quote
    swap: SwapResult


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class SwapOrchestrator:
    """
    Drives one swap cycle at a time.

    Swap count and direction change only after a confirmed swap; any error
    leaves them as they were, sets the FAILED stage and propagates.
    """

    def __init__(
        self,
        wallet: Wallet,
        aggregator: QuoteAggregator,
        approvals: ApprovalManager,
        executor: SwapExecutor,
        alternator: DirectionAlternator,
        *,
        slippage_bps: int = SLIPPAGE_BPS,
        balance_usage_bps: int = BALANCE_USAGE_BPS,
        min_swap_amount: Decimal = MIN_SWAP_AMOUNT,
        max_gas_price_gwei: Decimal = MAX_GAS_PRICE_GWEI,
    ):
        self.wallet = wallet
        self.aggregator = aggregator
        self.approvals = approvals
        self.executor = executor
        self.alternator = alternator
        self.slippage_bps = slippage_bps
        self.balance_usage_bps = balance_usage_bps
        self.min_swap_amount = Decimal(min_swap_amount)
        self.max_gas_price_gwei = Decimal(max_gas_price_gwei)

        self.state = SwapCycleState(direction=alternator.direction)
        self._cycle_lock = asyncio.Lock()

    def compute_amount(self, balance: int, token: TokenDescriptor) -> int:
        """Share of the balance to sell; raises InsufficientBalance below the minimum"""
        amount = balance * self.balance_usage_bps // 10_000
        if token.from_units(amount) < self.min_swap_amount:
            raise InsufficientBalance(
                f"Balance too low for swap: {token.format(balance)} "
                f"(minimum {self.min_swap_amount} {token.symbol})"
            )
        return amount

    async def run_cycle(self) -> CycleResult:
        if self._cycle_lock.locked():
            raise CycleInProgress("A swap cycle is already running")

        async with self._cycle_lock:
            try:
                return await self._run()
            except Exception as e:
                self.state.stage = CycleStage.FAILED
                self.state.last_error = str(e)
                raise

    def _enter(self, stage: CycleStage) -> None:
        logger.debug(f"Cycle stage: {self.state.stage.value} -> {stage.value}")
        self.state.stage = stage

    async def _run(self) -> CycleResult:
        direction = self.state.direction
        sell, buy = self.alternator.legs(direction)
        swap_number = self.state.swap_count + 1

        logger.info("=" * 60)
        logger.info(f"🔄 SWAP {swap_number}: {sell.symbol} → {buy.symbol}")
        logger.info("=" * 60)

        # Step 1: size the trade
        self._enter(CycleStage.COMPUTING_AMOUNT)
        before = await self.executor.snapshot(sell, buy)
        sell_amount = self.compute_amount(before.sell, sell)
        logger.info(f"💰 Amount: {sell.format(sell_amount)} (balance {sell.format(before.sell)})")

        # Step 2: quote
        self._enter(CycleStage.QUOTING)
        gas_price = await self.wallet.gas_price()
        gas_check = gas_price_guard(gas_price, self.max_gas_price_gwei)
        if not gas_check.ok:
            raise GasPriceTooHigh(gas_check.reason)

        context = QuoteContext(
            taker=self.wallet.address,
            slippage_bps=self.slippage_bps,
            gas_price_wei=gas_price,
        )
        quote = await self.aggregator.best_quote(sell, buy, sell_amount, context)

        # Step 3: approvals
        self._enter(CycleStage.APPROVING)
        approval_txs = await self.approvals.ensure_for_quote(quote)

        # Step 4: execute
        self._enter(CycleStage.EXECUTING)
        try:
            swap = await self.executor.submit(quote)
        except (TransactionReverted, TransactionTimeout):
            self.approvals.invalidate(sell.address)
            raise
        self.approvals.consume(quote)
        swap.approvals = approval_txs

        # Step 5: verify (advisory)
        self._enter(CycleStage.VERIFYING)
        swap.verification = await self.executor.verify(quote, before)

        # Commit
        self.state.swap_count = swap_number
        self.state.direction = self.alternator.flip()
        self.state.last_gas_price = gas_price
        self.state.last_error = ""
        self._enter(CycleStage.IDLE)

        logger.info(f"✅ Swap completed! Total: {self.state.swap_count}")

        return CycleResult(
            swap_number=swap_number,
            direction=direction,
            sell_token=sell,
            buy_token=buy,
            sell_amount=sell_amount,
            quote=quote,
            swap=swap,
        )

    async def stats(self) -> dict:
        """Balances of both assets, swaps so far and the next direction"""
        token_a, token_b = self.alternator.token_a, self.alternator.token_b
        balance_a, balance_b = await asyncio.gather(
            self.wallet.token_balance(token_a.address),
            self.wallet.token_balance(token_b.address),
        )
        return {
            "balances": {
                token_a.symbol: token_a.from_units(balance_a),
                token_b.symbol: token_b.from_units(balance_b),
            },
            "total_swaps": self.state.swap_count,
            "next_direction": self.alternator.label(self.state.direction),
            "stage": self.state.stage.value,
        }
