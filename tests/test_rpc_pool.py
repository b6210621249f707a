"""
Tests for RPC endpoint failover.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError

from swapbot.errors import NoHealthyEndpoint, TransportFailure
from swapbot.rpc_pool import EndpointHealth, RPCEndpoint, RPCPool
from swapbot.retry import BackoffPolicy

from tests.conftest import no_sleep


def make_pool(count=3, **kwargs):
    endpoints = [RPCEndpoint(url=f"https://rpc{i}.example", w3=MagicMock(name=f"w3_{i}")) for i in range(count)]
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("backoff", BackoffPolicy(initial=0, multiplier=1, maximum=0))
    return RPCPool(endpoints, sleep=no_sleep, **kwargs)


# =============================================================================
# ROTATION
# =============================================================================

class TestRotate:
    """Tests for cursor movement"""

    @pytest.mark.asyncio
    async def test_rotate_skips_unhealthy(self):
        pool = make_pool(3)
        pool.endpoints[1].mark_unhealthy(ConnectionError("down"))

        endpoint = await pool.rotate()

        assert endpoint is pool.endpoints[2]

    @pytest.mark.asyncio
    async def test_rotate_wraps_when_all_unhealthy(self):
        pool = make_pool(3)
        for endpoint in pool.endpoints:
            endpoint.mark_unhealthy(ConnectionError("down"))

        assert await pool.rotate() is pool.endpoints[1]

    @pytest.mark.asyncio
    async def test_concurrent_rotation_for_same_failure_moves_once(self):
        """Two callers reporting the same failed endpoint advance the cursor once"""
        pool = make_pool(3)
        failed = pool.current()

        await asyncio.gather(pool.rotate(failed=failed), pool.rotate(failed=failed))

        assert pool.current() is pool.endpoints[1]

    def test_empty_pool_has_no_current(self):
        pool = RPCPool([], sleep=no_sleep)

        with pytest.raises(NoHealthyEndpoint):
            pool.current()


# =============================================================================
# FAILOVER
# =============================================================================

class TestWithFailover:
    """Tests for with_failover"""

    @pytest.mark.asyncio
    async def test_fails_over_to_working_endpoint(self):
        """Only the third endpoint answers; the call succeeds there"""
        pool = make_pool(3)
        good = pool.endpoints[2].w3

        async def op(w3):
            if w3 is not good:
                raise ConnectionError("refused")
            return 42

        result = await pool.with_failover(op)

        assert result == 42
        assert pool.current() is pool.endpoints[2]
        assert pool.endpoints[0].health == EndpointHealth.UNHEALTHY
        assert pool.endpoints[1].health == EndpointHealth.UNHEALTHY
        assert pool.endpoints[2].is_healthy

    @pytest.mark.asyncio
    async def test_transport_failure_after_exhaustion(self):
        pool = make_pool(2, max_attempts=2)
        op = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(TransportFailure) as exc_info:
            await pool.with_failover(op, label="eth_blockNumber")

        assert op.await_count == 2
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert all(not e.is_healthy for e in pool.endpoints)

    @pytest.mark.asyncio
    async def test_revert_does_not_rotate(self):
        pool = make_pool(3)
        op = AsyncMock(side_effect=ContractLogicError("execution reverted"))

        with pytest.raises(ContractLogicError):
            await pool.with_failover(op)

        assert op.await_count == 1
        assert pool.current() is pool.endpoints[0]
        assert pool.endpoints[0].is_healthy

    @pytest.mark.asyncio
    async def test_success_restores_health(self):
        pool = make_pool(1)
        pool.endpoints[0].mark_unhealthy(ConnectionError("earlier"))

        async def op(w3):
            return "ok"

        assert await pool.with_failover(op) == "ok"
        assert pool.endpoints[0].is_healthy
