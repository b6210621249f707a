# swapbot/executor.py
"""
Swap Execution Engine
Submits the winning quote's transaction and checks its on-chain effect
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from web3.exceptions import ContractLogicError

from swapbot.config import (
    GAS_LIMIT_CEILING,
    GAS_LIMIT_MULTIPLIER,
    SETTLE_DELAY_SECONDS,
    SIMULATION_MODE,
)
from swapbot.errors import SimulationFailed, TransactionReverted
from swapbot.sources.base import Quote
from swapbot.tokens import TokenDescriptor
from swapbot.wallet import Wallet, tx_hash_hex

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS & DATA CLASSES
# =============================================================================

class VerificationStatus(Enum):
    CONFIRMED = "confirmed"        # sell balance went down, buy balance went up
    MISMATCH = "mismatch"          # balances moved the wrong way (or not at all)
    UNAVAILABLE = "unavailable"    # balances could not be read


@dataclass(frozen=True)
class BalanceSnapshot:
    sell: int
    buy: int
    taken_at: float = 0


@dataclass
class BalanceCheck:
    status: VerificationStatus
    sell_delta: int = 0
    buy_delta: int = 0
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == VerificationStatus.CONFIRMED


@dataclass
class SwapResult:
    """Result of a confirmed swap"""
    source: str
    tx_hash: str
    sell_amount: int
    expected_buy_amount: int
    gas_limit: int
    gas_used: int = 0
    effective_gas_price: int = 0
    verification: Optional[BalanceCheck] = None
    execution_time_ms: float = 0
    approvals: list = field(default_factory=list)


# =============================================================================
# EXECUTOR
# =============================================================================

class SwapExecutor:
    """
    Executes quotes through the wallet.

    Failure before or during the transaction raises; a reverted receipt is
    TransactionReverted. Once the receipt says success, the swap is a
    success: the balance check afterwards is recorded, never raised.
    """

    def __init__(
        self,
        wallet: Wallet,
        *,
        gas_ceiling: int = GAS_LIMIT_CEILING,
        gas_multiplier: Decimal = GAS_LIMIT_MULTIPLIER,
        simulate: bool = SIMULATION_MODE,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.wallet = wallet
        self.gas_ceiling = gas_ceiling
        self.gas_multiplier = Decimal(gas_multiplier)
        self.simulate = simulate
        self.settle_delay = settle_delay
        self._sleep = sleep

        # Execution statistics
        self.total_executions = 0
        self.successful_executions = 0
        self.total_gas_used = 0

    async def snapshot(self, sell_token: TokenDescriptor, buy_token: TokenDescriptor) -> BalanceSnapshot:
        sell, buy = await asyncio.gather(
            self.wallet.token_balance(sell_token.address),
            self.wallet.token_balance(buy_token.address),
        )
        return BalanceSnapshot(sell=sell, buy=buy, taken_at=time.time())

    async def gas_limit(self, quote: Quote) -> int:
        """Quote hint (or node estimate) times the multiplier, capped at the ceiling"""
        base = quote.gas
        if not base:
            base = await self.wallet.estimate_gas(quote.to_tx())

        limit = int(Decimal(base) * self.gas_multiplier)
        if limit > self.gas_ceiling:
            logger.warning(f"Gas limit {limit} above ceiling, capped at {self.gas_ceiling}")
            limit = self.gas_ceiling
        return limit

    async def simulate_swap(self, tx: Dict[str, Any]) -> None:
        """eth_call the swap; raises SimulationFailed on revert"""
        try:
            await self.wallet.call(tx)
        except ContractLogicError as e:
            raise SimulationFailed(f"Simulation reverted: {e}") from e

    async def execute(self, quote: Quote, before: Optional[BalanceSnapshot] = None) -> SwapResult:
        """Submit `quote` and record the post-swap balance check on the result"""
        if before is None:
            before = await self.snapshot(quote.sell_token, quote.buy_token)

        result = await self.submit(quote)
        result.verification = await self.verify(quote, before)
        return result

    async def submit(self, quote: Quote) -> SwapResult:
        start_time = time.time()
        self.total_executions += 1

        tx = quote.to_tx()
        tx["gas"] = await self.gas_limit(quote)

        if self.simulate:
            logger.info(f"[{quote.source}] Simulating swap...")
            await self.simulate_swap(tx)

        logger.info(
            f"[{quote.source}] 🚀 Swapping {quote.sell_token.format(quote.sell_amount)} "
            f"-> ~{quote.formatted_output} (gas limit {tx['gas']})"
        )
        receipt = await self.wallet.send_transaction(tx)

        tx_hash = tx_hash_hex(receipt.get("transactionHash", ""))
        gas_used = int(receipt.get("gasUsed", 0))
        self.total_gas_used += gas_used

        if receipt["status"] != 1:
            raise TransactionReverted(
                f"[{quote.source}] swap reverted: {tx_hash}", tx_hash=tx_hash, gas_used=gas_used
            )

        self.successful_executions += 1
        logger.info(f"[{quote.source}] ✅ Swap confirmed: {tx_hash} (gas used {gas_used})")

        return SwapResult(
            source=quote.source,
            tx_hash=tx_hash,
            sell_amount=quote.sell_amount,
            expected_buy_amount=quote.buy_amount,
            gas_limit=tx["gas"],
            gas_used=gas_used,
            effective_gas_price=int(receipt.get("effectiveGasPrice", 0)),
            execution_time_ms=(time.time() - start_time) * 1000,
        )

    async def verify(self, quote: Quote, before: BalanceSnapshot) -> BalanceCheck:
        """Compare balances after the settle delay with the pre-swap snapshot"""
        await self._sleep(self.settle_delay)

        try:
            after = await self.snapshot(quote.sell_token, quote.buy_token)
        except Exception as e:
            logger.warning(f"⚠️ Could not verify balances after swap: {e}")
            return BalanceCheck(VerificationStatus.UNAVAILABLE, reason=str(e))

        sell_delta = before.sell - after.sell
        buy_delta = after.buy - before.buy

        if sell_delta > 0 and buy_delta > 0:
            logger.info(
                f"📊 Balance change: -{quote.sell_token.format(sell_delta)} "
                f"+{quote.buy_token.format(buy_delta)}"
            )
            return BalanceCheck(VerificationStatus.CONFIRMED, sell_delta, buy_delta)

        reason = f"sell delta {sell_delta}, buy delta {buy_delta}"
        logger.warning(f"⚠️ Balance check inconclusive: {reason}")
        return BalanceCheck(VerificationStatus.MISMATCH, sell_delta, buy_delta, reason)

    def get_statistics(self) -> dict:
        """Get execution statistics"""
        return {
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "success_rate": (
                self.successful_executions / self.total_executions * 100
                if self.total_executions > 0 else 0
            ),
            "total_gas_used": self.total_gas_used,
        }
