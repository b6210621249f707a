# swapbot/retry.py
"""
Retry / backoff combinator shared by RPC failover, quote fetching and
approval polling
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, BaseException], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before retry N (1-based) = initial * multiplier**(N-1), capped"""
    initial: float = 1.0
    multiplier: float = 2.0
    maximum: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.initial * (self.multiplier ** max(attempt - 1, 0)), self.maximum)


FIXED_ONE_SECOND = BackoffPolicy(initial=1.0, multiplier=1.0, maximum=1.0)


async def retry_async(
    op: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff: BackoffPolicy = FIXED_ONE_SECOND,
    retryable: Tuple[Type[BaseException], ...] = (Exception,),
    non_retryable: Tuple[Type[BaseException], ...] = (),
    on_retry: Optional[RetryHook] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run `op` up to `max_attempts` times.

    Exceptions in `non_retryable` (or outside `retryable`) propagate at once.
    Before each retry `on_retry(attempt, error)` is awaited, then the backoff
    delay is slept. The last error is re-raised when attempts run out.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await op()
        except non_retryable:
            raise
        except retryable as e:
            if attempt >= max_attempts:
                logger.warning(f"{label} failed after {attempt} attempts: {e}")
                raise
            logger.debug(f"{label} attempt {attempt}/{max_attempts} failed: {e}")
            if on_retry is not None:
                await on_retry(attempt, e)
            await sleep(backoff.delay(attempt))
