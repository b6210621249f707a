# swapbot/approvals.py
"""
Approval Manager
Idempotent, bounded ERC20 and Permit2 spending approvals with an in-memory cache
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from web3 import Web3

from swapbot.abis import encode_approve, encode_permit2_approve
from swapbot.config import (
    APPROVAL_HEADROOM_MULTIPLIER,
    APPROVAL_POLL_ATTEMPTS,
    GAS_LIMIT_APPROVAL,
    PERMIT2,
    PERMIT2_EXPIRATION_SECONDS,
)
from swapbot.errors import ApprovalFailed, SwapBotError, TransactionTimeout
from swapbot.retry import BackoffPolicy, retry_async
from swapbot.sources.base import Quote
from swapbot.wallet import Wallet, tx_hash_hex

logger = logging.getLogger(__name__)

MAX_UINT160 = 2 ** 160 - 1
MAX_UINT48 = 2 ** 48 - 1

ERC20 = "erc20"
PERMIT2_KIND = "permit2"


class AllowancePending(SwapBotError):
    """Approval mined but the new allowance is not readable yet"""
    pass


@dataclass
class ApprovalRecord:
    token: str
    spender: str
    granted: int
    checked_at: float
    kind: str = ERC20
    expiration: int = 0

    def covers(self, required: int, now: float) -> bool:
        if self.granted < required:
            return False
        if self.kind == PERMIT2_KIND and self.expiration <= now:
            return False
        return True


class ApprovalManager:
    """
    Keeps the wallet's allowances sufficient for the swaps it is about to make.

    Amounts are always bounded (required x headroom), never MaxUint256. One
    lock per (kind, token, spender) guarantees at most one approval in flight
    for that key; callers that waited re-check the cache before doing I/O.
    """

    def __init__(
        self,
        wallet: Wallet,
        *,
        headroom: int = APPROVAL_HEADROOM_MULTIPLIER,
        permit2: str = PERMIT2,
        permit2_expiration_s: int = PERMIT2_EXPIRATION_SECONDS,
        gas_limit: int = GAS_LIMIT_APPROVAL,
        poll_attempts: int = APPROVAL_POLL_ATTEMPTS,
        poll_backoff: BackoffPolicy = BackoffPolicy(initial=1.0, multiplier=2.0, maximum=4.0),
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if headroom < 1:
            raise ValueError("approval headroom must be >= 1")
        self.wallet = wallet
        self.headroom = headroom
        self.permit2 = Web3.to_checksum_address(permit2)
        self.permit2_expiration_s = permit2_expiration_s
        self.gas_limit = gas_limit
        self.poll_attempts = poll_attempts
        self.poll_backoff = poll_backoff
        self._clock = clock
        self._sleep = sleep
        self._records: Dict[Tuple[str, str, str], ApprovalRecord] = {}
        self._locks: Dict[Tuple[str, str, str], asyncio.Lock] = {}

    @staticmethod
    def _key(kind: str, token: str, spender: str) -> Tuple[str, str, str]:
        return (kind, token.lower(), spender.lower())

    def _get_lock(self, key: Tuple[str, str, str]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def bounded_amount(self, required: int) -> int:
        return required * self.headroom

    def cached(self, token: str, spender: str, kind: str = ERC20) -> Optional[ApprovalRecord]:
        return self._records.get(self._key(kind, token, spender))

    def invalidate(self, token: str, spender: Optional[str] = None) -> None:
        """Forget cached grants for `token` (optionally only for one spender)"""
        token = token.lower()
        for key in list(self._records):
            _, cached_token, cached_spender = key
            if cached_token == token and (spender is None or cached_spender == spender.lower()):
                del self._records[key]
                logger.debug(f"Approval cache invalidated: {key}")

    def consume(self, quote: Quote) -> None:
        """
        Deduct a mined swap's sell amount from the cached grants it drew on.
        transferFrom lowers the on-chain allowance, so the cache must follow.
        """
        token = quote.sell_token.address
        spenders = [(ERC20, quote.spender), (PERMIT2_KIND, quote.permit2_spender)]

        for kind, spender in spenders:
            if not spender:
                continue
            record = self._records.get(self._key(kind, token, spender))
            if record is not None:
                record.granted = max(record.granted - quote.sell_amount, 0)
                logger.debug(f"Approval {kind} {spender}: {record.granted} left after swap")

    # -------------------------------------------------------------------------
    # Submission helpers
    # -------------------------------------------------------------------------

    async def _submit(self, tx: Dict[str, Any], what: str) -> str:
        try:
            receipt = await self.wallet.send_transaction(tx)
        except TransactionTimeout as e:
            raise ApprovalFailed(f"{what} not confirmed: {e}", tx_hash=e.tx_hash) from e

        tx_hash = tx_hash_hex(receipt.get("transactionHash", ""))
        if receipt["status"] != 1:
            raise ApprovalFailed(f"{what} reverted", tx_hash=tx_hash)

        logger.info(f"✅ {what} confirmed: {tx_hash}")
        return tx_hash

    async def _await_visible(self, read: Callable[[], Awaitable[int]], amount: int, tx_hash: str) -> int:
        async def _check() -> int:
            current = await read()
            if current < amount:
                raise AllowancePending(f"allowance {current} < {amount} after approval {tx_hash}")
            return current

        try:
            return await retry_async(
                _check,
                max_attempts=self.poll_attempts,
                backoff=self.poll_backoff,
                retryable=(AllowancePending,),
                sleep=self._sleep,
                label="allowance poll",
            )
        except AllowancePending as e:
            raise ApprovalFailed(str(e), tx_hash=tx_hash) from e

    # -------------------------------------------------------------------------
    # ERC20
    # -------------------------------------------------------------------------

    async def ensure_allowance(self, token: str, spender: str, required: int) -> Optional[str]:
        """
        Make sure `spender` may pull at least `required` of `token`.
        Returns the approval tx hash, or None when nothing had to be sent.
        """
        key = self._key(ERC20, token, spender)
        record = self._records.get(key)
        if record and record.covers(required, self._clock()):
            return None

        async with self._get_lock(key):
            record = self._records.get(key)
            if record and record.covers(required, self._clock()):
                return None

            current = await self.wallet.allowance(token, spender)
            if current >= required:
                self._records[key] = ApprovalRecord(token, spender, current, self._clock())
                return None

            amount = self.bounded_amount(required)
            logger.info(f"🔓 Approving {amount} of {token} for {spender} (allowance {current})")

            tx_hash = await self._submit(
                {"to": token, "data": encode_approve(spender, amount), "value": 0, "gas": self.gas_limit},
                f"approve({spender})",
            )
            granted = await self._await_visible(
                lambda: self.wallet.allowance(token, spender), amount, tx_hash
            )
            self._records[key] = ApprovalRecord(token, spender, granted, self._clock())
            return tx_hash

    # -------------------------------------------------------------------------
    # Permit2
    # -------------------------------------------------------------------------

    async def ensure_permit2_allowance(self, token: str, spender: str, required: int) -> Optional[str]:
        """Same as `ensure_allowance`, but for a Permit2 grant; expired grants count as absent"""
        key = self._key(PERMIT2_KIND, token, spender)
        record = self._records.get(key)
        if record and record.covers(required, self._clock()):
            return None

        async with self._get_lock(key):
            now = self._clock()
            record = self._records.get(key)
            if record and record.covers(required, now):
                return None

            current, expiration, _ = await self.wallet.permit2_allowance(token, spender)
            if current >= required and expiration > now:
                self._records[key] = ApprovalRecord(token, spender, current, now, PERMIT2_KIND, expiration)
                return None

            amount = min(self.bounded_amount(required), MAX_UINT160)
            new_expiration = min(int(now) + self.permit2_expiration_s, MAX_UINT48)
            logger.info(f"🔓 Permit2: approving {amount} of {token} for {spender}")

            tx_hash = await self._submit(
                {
                    "to": self.permit2,
                    "data": encode_permit2_approve(token, spender, amount, new_expiration),
                    "value": 0,
                    "gas": self.gas_limit,
                },
                f"permit2.approve({spender})",
            )

            async def _read_amount() -> int:
                granted, _, _ = await self.wallet.permit2_allowance(token, spender)
                return granted

            granted = await self._await_visible(_read_amount, amount, tx_hash)
            self._records[key] = ApprovalRecord(
                token, spender, granted, self._clock(), PERMIT2_KIND, new_expiration
            )
            return tx_hash

    async def ensure_for_quote(self, quote: Quote) -> List[str]:
        """All approvals `quote` needs before it can execute; returns submitted tx hashes"""
        submitted = []
        token = quote.sell_token.address

        if quote.spender:
            tx_hash = await self.ensure_allowance(token, quote.spender, quote.sell_amount)
            if tx_hash:
                submitted.append(tx_hash)

        if quote.permit2_spender:
            tx_hash = await self.ensure_permit2_allowance(token, quote.permit2_spender, quote.sell_amount)
            if tx_hash:
                submitted.append(tx_hash)

        return submitted
