"""Tests for endpoint failover in the connection pool."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from autosell.config import Settings
from autosell.errors import AllEndpointsFailedError, RpcError
from autosell.services.connection_pool import ConnectionPool, create_connection_pool
from autosell.services.rpc_client import RpcEndpoint, SenderRoutedConnection

URLS = ["https://rpc-a", "https://rpc-b", "https://rpc-c"]


def _fake_endpoint(url: str):
    conn = MagicMock()
    conn.url = url
    conn.close = AsyncMock()
    return conn


def _pool(urls=URLS) -> ConnectionPool:
    return ConnectionPool(urls, endpoint_factory=_fake_endpoint)


# ---------------------------------------------------------------------------
# 1. Rotation
# ---------------------------------------------------------------------------

def test_empty_url_list_rejected():
    with pytest.raises(ValueError):
        ConnectionPool([])


def test_switch_wraps_around():
    pool = _pool()
    assert pool.current_index == 0
    pool.switch_to_next_endpoint()
    pool.switch_to_next_endpoint()
    assert pool.get_connection().url == "https://rpc-c"
    pool.switch_to_next_endpoint()
    assert pool.current_index == 0
    assert pool.get_connection().url == "https://rpc-a"


# ---------------------------------------------------------------------------
# 2. execute_with_fallback
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_success_on_first_endpoint_keeps_index():
    pool = _pool()
    result = await pool.execute_with_fallback(AsyncMock(return_value="ok"))
    assert result == "ok"
    assert pool.current_index == 0


@pytest.mark.asyncio
async def test_fails_over_to_next_endpoint():
    pool = _pool()
    seen = []

    async def op(conn):
        seen.append(conn.url)
        if conn.url == "https://rpc-a":
            raise RpcError("down", url=conn.url)
        return conn.url

    assert await pool.execute_with_fallback(op) == "https://rpc-b"
    assert seen == ["https://rpc-a", "https://rpc-b"]
    assert pool.current_index == 1


@pytest.mark.asyncio
async def test_rotation_persists_across_calls():
    pool = _pool()
    failing = AsyncMock(side_effect=RpcError("down"))
    with pytest.raises(AllEndpointsFailedError):
        await pool.execute_with_fallback(failing, max_retries=2)
    assert pool.current_index == 2

    op = AsyncMock(return_value="ok")
    await pool.execute_with_fallback(op)
    assert op.await_args.args[0].url == "https://rpc-c"


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error():
    pool = _pool()
    errors = [RpcError("first"), RpcError("second"), RpcError("third")]
    op = AsyncMock(side_effect=errors)

    with pytest.raises(AllEndpointsFailedError) as exc_info:
        await pool.execute_with_fallback(op)

    assert op.await_count == 3
    assert "All RPC endpoints failed" in str(exc_info.value)
    assert "third" in str(exc_info.value)
    assert exc_info.value.last_error is errors[2]
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
async def test_max_retries_can_exceed_endpoint_count():
    pool = _pool(["https://only"])
    op = AsyncMock(side_effect=RpcError("down"))
    with pytest.raises(AllEndpointsFailedError):
        await pool.execute_with_fallback(op, max_retries=4)
    assert op.await_count == 4


@pytest.mark.asyncio
async def test_close_closes_every_endpoint():
    pool = _pool()
    conns = [pool.get_connection(), pool.switch_to_next_endpoint(), pool.switch_to_next_endpoint()]
    await pool.close()
    for conn in conns:
        conn.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# 3. Factory
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_factory_builds_plain_endpoints_without_sender():
    settings = Settings(rpc_primary_url="https://a", rpc_fallback_urls=["https://b"], sender_url="")
    pool = create_connection_pool(settings)
    assert pool.size == 2
    assert isinstance(pool.get_connection(), RpcEndpoint)
    await pool.close()


@pytest.mark.asyncio
async def test_factory_wraps_endpoints_with_sender():
    settings = Settings(rpc_primary_url="https://a", sender_url="https://sender", sender_api_key="k")
    pool = create_connection_pool(settings)
    conn = pool.get_connection()
    assert isinstance(conn, SenderRoutedConnection)
    assert conn.url == "https://a"
    assert conn.sender_url == "https://sender"
    await pool.close()
