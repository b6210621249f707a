# swapbot/rpc_pool.py
"""
RPC Endpoint Pool
Round-robin failover across Base RPC endpoints, with health probing
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from swapbot.config import (
    MAX_BLOCK_LAG,
    MAX_RPC_LATENCY,
    RPC_BACKOFF_MAX_SECONDS,
    RPC_BACKOFF_SECONDS,
    RPC_ENDPOINTS,
    RPC_MAX_ATTEMPTS,
    RPC_REQUEST_TIMEOUT,
)
from swapbot.errors import NoHealthyEndpoint, SwapBotError, TransportFailure
from swapbot.retry import BackoffPolicy, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that say nothing about the endpoint itself
NON_TRANSPORT_ERRORS = (ContractLogicError, TimeExhausted, SwapBotError)


class EndpointHealth(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class RPCEndpoint:
    url: str
    w3: AsyncWeb3
    health: EndpointHealth = EndpointHealth.HEALTHY
    failures: int = 0
    last_error: str = ""

    @property
    def is_healthy(self) -> bool:
        return self.health == EndpointHealth.HEALTHY

    def mark_unhealthy(self, error: BaseException) -> None:
        self.health = EndpointHealth.UNHEALTHY
        self.failures += 1
        self.last_error = str(error)

    def mark_healthy(self) -> None:
        self.health = EndpointHealth.HEALTHY
        self.last_error = ""


def build_web3(url: str, timeout: float = RPC_REQUEST_TIMEOUT) -> AsyncWeb3:
    """AsyncWeb3 client for one endpoint; connection is verified on first use"""
    w3 = AsyncWeb3(
        AsyncHTTPProvider(url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
    )
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


class RPCPool:
    """
    Ordered set of endpoints for one chain.

    The cursor is the only shared mutable state; `rotate` changes it under a
    lock so overlapping failures of the same endpoint move it only once.
    """

    def __init__(
        self,
        endpoints: Sequence[RPCEndpoint],
        *,
        max_attempts: int = RPC_MAX_ATTEMPTS,
        backoff: BackoffPolicy = BackoffPolicy(
            initial=RPC_BACKOFF_SECONDS, multiplier=2.0, maximum=RPC_BACKOFF_MAX_SECONDS
        ),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.endpoints: List[RPCEndpoint] = list(endpoints)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep
        self._cursor = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_urls(
        cls,
        urls: Optional[Sequence[str]] = None,
        *,
        timeout: float = RPC_REQUEST_TIMEOUT,
        **kwargs,
    ) -> "RPCPool":
        endpoints = []
        for url in urls if urls is not None else RPC_ENDPOINTS:
            try:
                endpoints.append(RPCEndpoint(url=url, w3=build_web3(url, timeout)))
            except ValueError as e:
                logger.error(f"Failed to initialize provider for {url}: {e}")
        return cls(endpoints, **kwargs)

    # -------------------------------------------------------------------------
    # Cursor
    # -------------------------------------------------------------------------

    def current(self) -> RPCEndpoint:
        if not self.endpoints:
            raise NoHealthyEndpoint("No working RPC providers available")
        return self.endpoints[self._cursor]

    @property
    def w3(self) -> AsyncWeb3:
        return self.current().w3

    async def rotate(self, failed: Optional[RPCEndpoint] = None) -> RPCEndpoint:
        """
        Advance to the next endpoint in ring order, preferring healthy ones.

        If `failed` is given and the cursor has already moved off it, another
        caller rotated first and the cursor is left alone.
        """
        async with self._lock:
            current = self.current()
            if failed is not None and current is not failed:
                return current

            count = len(self.endpoints)
            if count == 1:
                return current

            start = self._cursor
            for step in range(1, count):
                index = (start + step) % count
                if self.endpoints[index].is_healthy:
                    self._cursor = index
                    break
            else:
                self._cursor = (start + 1) % count

            logger.info(f"🌐 Switched RPC to: {self.endpoints[self._cursor].url}")
            return self.endpoints[self._cursor]

    # -------------------------------------------------------------------------
    # Failover
    # -------------------------------------------------------------------------

    async def with_failover(
        self,
        op: Callable[[AsyncWeb3], Awaitable[T]],
        max_attempts: Optional[int] = None,
        label: str = "RPC call",
    ) -> T:
        """
        Run `op(w3)` against the active endpoint, rotating on transport errors.

        Raises TransportFailure (chained to the last error) when every
        attempt fails. Reverts and domain errors propagate untouched.
        """
        attempts = max_attempts or self.max_attempts
        active: List[RPCEndpoint] = []

        async def attempt() -> T:
            endpoint = self.current()
            active.append(endpoint)
            result = await op(endpoint.w3)
            endpoint.mark_healthy()
            return result

        async def on_retry(number: int, error: BaseException) -> None:
            failed = active[-1]
            failed.mark_unhealthy(error)
            logger.warning(f"RPC attempt {number} failed on {failed.url}: {error}")
            await self.rotate(failed=failed)

        try:
            return await retry_async(
                attempt,
                max_attempts=attempts,
                backoff=self.backoff,
                non_retryable=NON_TRANSPORT_ERRORS,
                on_retry=on_retry,
                sleep=self._sleep,
                label=label,
            )
        except NON_TRANSPORT_ERRORS:
            raise
        except Exception as e:
            if active:
                active[-1].mark_unhealthy(e)
                await self.rotate(failed=active[-1])
            raise TransportFailure(f"{label} failed after {attempts} attempts: {e}", last_error=e) from e

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def check(self, endpoint: RPCEndpoint) -> Tuple[bool, str]:
        """
        Check RPC health
        Returns (is_healthy: bool, status_message: str)
        """
        try:
            start = time.monotonic()
            latest = await endpoint.w3.eth.block_number
            latency = time.monotonic() - start

            block = await endpoint.w3.eth.get_block("latest")
            lag = abs(latest - block["number"])

            if latency > MAX_RPC_LATENCY:
                return False, f"High latency {latency:.2f}s"

            if lag > MAX_BLOCK_LAG:
                return False, f"Block lag {lag}"

            return True, f"OK (latency={latency:.2f}s, block={latest})"

        except Exception as e:
            return False, str(e)

    async def find_healthy(self) -> RPCEndpoint:
        """Move the cursor to the first endpoint (from the cursor on) that passes a health check"""
        count = len(self.endpoints)
        if count == 0:
            raise NoHealthyEndpoint("No working RPC providers available")

        for step in range(count):
            index = (self._cursor + step) % count
            endpoint = self.endpoints[index]
            ok, status = await self.check(endpoint)
            if ok:
                endpoint.mark_healthy()
                async with self._lock:
                    self._cursor = index
                logger.info(f"✅ RPC healthy: {endpoint.url} {status}")
                return endpoint
            endpoint.mark_unhealthy(RuntimeError(status))
            logger.warning(f"❌ RPC unhealthy: {endpoint.url} {status}")

        raise NoHealthyEndpoint("All RPC endpoints failed the health check")

    async def close(self) -> None:
        for endpoint in self.endpoints:
            disconnect = getattr(endpoint.w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
