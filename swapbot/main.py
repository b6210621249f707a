# swapbot/main.py
"""
Alternating Swap Bot Main Loop
USDT → USDC → USDT ... on Base, best price across Uniswap V4, Relay and 0x

THIS IS THE ENTRY POINT - Run with: python -m swapbot.main

MODES:
1. parallel: query every source, execute the best net value (default)
2. sequential: query sources in priority order, execute the first viable one
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections import Counter
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable, Optional

from web3 import Web3

from swapbot.approvals import ApprovalManager
from swapbot.config import (
    CHAIN_NAME,
    FAILURE_DELAY_SECONDS,
    LOG_LEVEL,
    MAX_CONSECUTIVE_FAILURES,
    NATIVE_SYMBOL,
    QUOTE_MODE,
    SWAP_INTERVAL_SECONDS,
    WalletConfig,
    load_wallet_config,
)
from swapbot.executor import SwapExecutor
from swapbot.oracle import ChainlinkPriceOracle
from swapbot.orchestrator import CycleResult, DirectionAlternator, SwapOrchestrator
from swapbot.quote_engine import FanOut, QuoteAggregator
from swapbot.rpc_pool import RPCPool
from swapbot.sources import RelaySource, UniswapV4Source, ZeroXSource
from swapbot.tokens import DEFAULT_PAIR, get_token
from swapbot.wallet import Wallet

LOG_DIR = Path(__file__).parent.parent / "logs"

logger = logging.getLogger(__name__)


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: str = LOG_LEVEL) -> None:
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s | %(levelname)-8s | %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(LOG_DIR / f"swapbot_{datetime.now().strftime('%Y%m%d')}.log"),
        ]
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# STATISTICS TRACKER
# =============================================================================

class StatisticsTracker:
    """Track bot performance statistics"""

    def __init__(self):
        self.start_time = datetime.now()
        self.cycles = 0
        self.swaps_successful = 0
        self.consecutive_failures = 0
        self.total_gas_used = 0
        self.unverified_swaps = 0
        self.wins_by_source = Counter()
        self.errors_by_kind = Counter()

    def record_success(self, result: CycleResult):
        self.cycles += 1
        self.swaps_successful += 1
        self.consecutive_failures = 0
        self.total_gas_used += result.swap.gas_used
        self.wins_by_source[result.quote.source] += 1
        if result.swap.verification is not None and not result.swap.verification.ok:
            self.unverified_swaps += 1

    def record_failure(self, error: BaseException):
        self.cycles += 1
        self.consecutive_failures += 1
        self.errors_by_kind[type(error).__name__] += 1

    def get_summary(self) -> str:
        runtime = datetime.now() - self.start_time
        success_rate = (self.swaps_successful / self.cycles * 100) if self.cycles > 0 else 0
        wins = ", ".join(f"{name}={count}" for name, count in self.wins_by_source.most_common()) or "-"
        errors = ", ".join(f"{name}={count}" for name, count in self.errors_by_kind.most_common()) or "-"

        return (
            f"\n{'='*60}\n"
            f"📊 BOT STATISTICS\n"
            f"{'='*60}\n"
            f"Runtime: {runtime}\n"
            f"Cycles: {self.cycles}\n"
            f"Swaps Successful: {self.swaps_successful} ({success_rate:.1f}%)\n"
            f"Unverified Swaps: {self.unverified_swaps}\n"
            f"Wins by Source: {wins}\n"
            f"Errors: {errors}\n"
            f"Total Gas Used: {self.total_gas_used}\n"
            f"{'='*60}\n"
        )


# =============================================================================
# ENGINE WIRING
# =============================================================================

def build_engine(
    mode: Optional[FanOut] = None,
    wallet_config: Optional[WalletConfig] = None,
) -> SwapOrchestrator:
    mode = FanOut(mode or QUOTE_MODE)
    wallet_config = wallet_config or load_wallet_config()

    pool = RPCPool.from_urls()
    wallet = Wallet(wallet_config.private_key, pool)

    if wallet_config.public_address and Web3.to_checksum_address(wallet_config.public_address) != wallet.address:
        logger.warning(f"⚠️ PUBLIC_ADDRESS does not match the key's address {wallet.address}")

    sources = [UniswapV4Source(pool), RelaySource(), ZeroXSource()]
    aggregator = QuoteAggregator(sources, ChainlinkPriceOracle(pool), mode=mode)

    token_a, token_b = (get_token(symbol) for symbol in DEFAULT_PAIR)

    return SwapOrchestrator(
        wallet=wallet,
        aggregator=aggregator,
        approvals=ApprovalManager(wallet),
        executor=SwapExecutor(wallet),
        alternator=DirectionAlternator(token_a, token_b),
    )


# =============================================================================
# MAIN BOT CLASS
# =============================================================================

class SwapBot:
    """
    Runs swap cycles on an interval until stopped.

    A failed cycle is logged and retried after the failure delay; after
    `max_failures` consecutive failures the bot stops.
    """

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        *,
        interval: float = SWAP_INTERVAL_SECONDS,
        failure_delay: float = FAILURE_DELAY_SECONDS,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.orchestrator = orchestrator
        self.interval = interval
        self.failure_delay = failure_delay
        self.max_failures = max_failures
        self.stats = StatisticsTracker()
        self.running = False
        self.halted = False
        self._sleep = sleep
        self._stop_event = asyncio.Event()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_shutdown)
        signal.signal(signal.SIGTERM, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info("\n🛑 Shutdown signal received, finishing current cycle...")
        self.stop()

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()

    async def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def check_prerequisites(self) -> bool:
        """Check RPC and gas balance before starting"""
        logger.info("Checking prerequisites...")
        wallet = self.orchestrator.wallet

        try:
            await wallet.pool.find_healthy()
        except Exception as e:
            logger.error(f"❌ RPC check failed: {e}")
            return False

        try:
            native = await wallet.native_balance()
            native_human = Decimal(native) / Decimal(10 ** 18)
            logger.info(f"{NATIVE_SYMBOL} balance: {native_human:.6f}")
            if native == 0:
                logger.warning(f"⚠️ No {NATIVE_SYMBOL} for gas!")
        except Exception as e:
            logger.error(f"❌ Balance check failed: {e}")
            return False

        logger.info("✅ All prerequisites checked")
        return True

    async def display_balances(self) -> None:
        try:
            stats = await self.orchestrator.stats()
        except Exception as e:
            logger.error(f"Balance display failed: {e}")
            return

        for symbol, balance in stats["balances"].items():
            logger.info(f"{symbol} Balance: {balance}")
        logger.info(f"Total swaps: {stats['total_swaps']} | Next: {stats['next_direction']}")
        logger.info("-" * 40)

    async def run_once(self) -> bool:
        """Run a single swap cycle; True on success"""
        try:
            result = await self.orchestrator.run_cycle()
        except Exception as e:
            self.stats.record_failure(e)
            logger.error(
                f"❌ Swap attempt {self.stats.consecutive_failures} failed: "
                f"{type(e).__name__}: {e}"
            )
            return False

        self.stats.record_success(result)
        return True

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Main bot loop
        Runs cycles until stopped, halted by failures, or `max_cycles` is reached
        """
        logger.info("=" * 60)
        logger.info(f"🚀 SWAP BOT STARTING on {CHAIN_NAME}")
        logger.info(f"Wallet: {self.orchestrator.wallet.address}")
        logger.info(f"Mode: {self.orchestrator.aggregator.mode.value}")
        logger.info(f"Interval: {self.interval}s")
        logger.info("=" * 60)

        self.running = True
        cycles = 0

        try:
            while self.running:
                ok = await self.run_once()
                cycles += 1

                if ok:
                    await self.display_balances()
                    delay = self.interval
                else:
                    if self.stats.consecutive_failures >= self.max_failures:
                        logger.error(
                            f"❌ Too many consecutive failures ({self.max_failures}). Stopping bot."
                        )
                        self.halted = True
                        self.stop()
                        break
                    delay = self.failure_delay

                if max_cycles is not None and cycles >= max_cycles:
                    break

                if self.running:
                    logger.info(f"Waiting {delay:.0f} seconds until next swap...")
                    await self._wait(delay)

        finally:
            self.running = False
            logger.info(self.stats.get_summary())
            logger.info("Bot stopped.")


# =============================================================================
# ENTRY POINT
# =============================================================================

async def _run(args: argparse.Namespace) -> int:
    orchestrator = build_engine(mode=FanOut(args.mode))
    bot = SwapBot(orchestrator, interval=args.interval)

    try:
        if not await bot.check_prerequisites():
            logger.error("Prerequisites check failed. Exiting.")
            return 1

        await bot.display_balances()
        bot.install_signal_handlers()
        await bot.run(max_cycles=1 if args.once else None)
    finally:
        await orchestrator.aggregator.close()
        await orchestrator.wallet.pool.close()

    if args.once:
        return 0 if bot.stats.swaps_successful else 1
    return 1 if bot.halted else 0


def main(argv=None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Alternating USDT/USDC swap bot for Base")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in FanOut],
        default=QUOTE_MODE,
        help="Quote fan-out: parallel (best net value) or sequential (first viable by priority)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single swap cycle and exit",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=SWAP_INTERVAL_SECONDS,
        help=f"Seconds between swaps (default: {SWAP_INTERVAL_SECONDS})",
    )
    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL,
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(_run(args))
    except RuntimeError as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
