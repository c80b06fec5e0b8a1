import asyncio
from unittest.mock import patch

import pytest

from clusterkit.errors import NetworkError
from clusterkit.transport import (
    BatchRpcRequest,
    ConnectionPool,
    ConnectionPoolConfig,
    InMemoryRpcClient,
    InMemoryRpcServer,
    RequestBatcher,
    RetryClient,
    RetryPolicy,
    RpcClient,
    RpcRequest,
    RpcResponse,
)


def echo_server() -> InMemoryRpcServer:
    server = InMemoryRpcServer()
    server.register("echo", lambda payload: payload)
    return server


class FailingClient(RpcClient):
    def __init__(self) -> None:
        self.calls = 0

    def call(self, method, payload):
        self.calls += 1
        raise NetworkError(f"down {self.calls}")


@pytest.mark.asyncio
async def test_connection_pool_reuses_connection():
    pool = ConnectionPool(ConnectionPoolConfig(max_connections=5, min_connections=1))
    conn1 = await pool.get_connection("localhost")
    conn2 = await pool.get_connection("localhost")
    assert conn1 == "conn_1"
    assert conn2 == conn1
    pool.release_connection(conn1)
    assert pool.stats()[conn1].request_count == 2


@pytest.mark.asyncio
async def test_connection_pool_exhaustion():
    pool = ConnectionPool(ConnectionPoolConfig(max_connections=2))
    first = await pool.get_connection("localhost")
    pool.mark_unhealthy(first)
    second = await pool.get_connection("localhost")
    assert second == "conn_2"
    pool.mark_unhealthy(second)
    with pytest.raises(NetworkError, match="Connection pool exhausted"):
        await pool.get_connection("localhost")


@pytest.mark.asyncio
async def test_cleanup_removes_unhealthy_above_minimum():
    pool = ConnectionPool(ConnectionPoolConfig(min_connections=0))
    conn = await pool.get_connection("localhost")
    pool.mark_unhealthy(conn)
    assert pool.stats()[conn].is_healthy is False
    pool.cleanup_expired()
    assert pool.stats() == {}


@pytest.mark.asyncio
async def test_cleanup_keeps_connections_at_minimum():
    pool = ConnectionPool(ConnectionPoolConfig(min_connections=1))
    conn = await pool.get_connection("localhost")
    pool.mark_unhealthy(conn)
    pool.cleanup_expired()
    assert list(pool.stats()) == [conn]


@pytest.mark.asyncio
async def test_batch_rpc():
    client = InMemoryRpcClient(echo_server())
    requests = [
        RpcRequest(1, "echo", b"hello"),
        RpcRequest(2, "echo", b"world"),
    ]
    responses = await client.call_batch(requests)
    assert len(responses) == 2
    assert responses[0].value == b"hello"
    assert responses[1].value == b"world"
    assert [r.id for r in responses] == [1, 2]


@pytest.mark.asyncio
async def test_handle_batch_reports_unknown_method():
    server = echo_server()
    batch = BatchRpcRequest([RpcRequest(7, "missing", b"x")], batch_id=42)
    response = await server.handle_batch(batch)
    assert response.batch_id == 42
    assert response.responses[0].ok is False
    assert response.responses[0].error == "Method not found: missing"


@pytest.mark.asyncio
async def test_async_rpc():
    client = InMemoryRpcClient(echo_server())
    assert await client.call_async("echo", b"test") == b"test"


@pytest.mark.asyncio
async def test_async_handler_is_awaited():
    server = InMemoryRpcServer()

    async def upper(payload):
        await asyncio.sleep(0)
        return payload.upper()

    server.register_async("upper", upper)
    client = InMemoryRpcClient(server)
    assert await client.call_async("upper", b"abc") == b"ABC"
    with pytest.raises(NetworkError, match="method not found: upper"):
        client.call("upper", b"abc")


def test_sync_call_and_missing_method():
    client = InMemoryRpcClient(echo_server())
    assert client.call("echo", b"ping") == b"ping"
    with pytest.raises(NetworkError, match="method not found: nope"):
        client.call("nope", b"")


@pytest.mark.asyncio
async def test_retry_client_async():
    policy = RetryPolicy(max_retries=3, retry_on_empty=False, backoff_base_ms=10)
    retry_client = RetryClient(InMemoryRpcClient(echo_server()), policy)
    assert await retry_client.call_async("echo", b"retry_test") == b"retry_test"


def test_retry_succeeds_after_initial_failure():
    server = InMemoryRpcServer()
    attempts = []

    def flaky(_payload):
        attempts.append(1)
        return b"" if len(attempts) == 1 else b"ok"

    server.register("flaky", flaky)
    retry = RetryClient(
        InMemoryRpcClient(server),
        RetryPolicy(max_retries=2, retry_on_empty=True, backoff_base_ms=None),
    )
    assert retry.call("flaky", b"") == b"ok"
    assert len(attempts) == 2


def test_retry_raises_last_error_with_backoff():
    inner = FailingClient()
    retry = RetryClient(inner, RetryPolicy(max_retries=2, backoff_base_ms=10))
    with patch("clusterkit.transport.time.sleep") as sleep:
        with pytest.raises(NetworkError, match="down 3"):
            retry.call("any", b"")
    assert inner.calls == 3
    assert [c.args[0] for c in sleep.call_args_list] == [0.01, 0.02, 0.04]


def test_retry_on_empty_exhausted_gives_generic_error():
    server = InMemoryRpcServer()
    server.register("empty", lambda _p: b"")
    retry = RetryClient(
        InMemoryRpcClient(server), RetryPolicy(max_retries=1, retry_on_empty=True)
    )
    with pytest.raises(NetworkError, match="retry failed"):
        retry.call("empty", b"")


@pytest.mark.asyncio
async def test_retry_batch_returns_responses():
    retry = RetryClient(InMemoryRpcClient(echo_server()), RetryPolicy(max_retries=1))
    responses = await retry.call_batch([RpcRequest(1, "echo", b"a")])
    assert responses[0].value == b"a"


def test_request_batcher_settings():
    batcher = RequestBatcher(3, 0.1)
    assert batcher.batch_size == 3
    assert batcher.batch_timeout == 0.1


@pytest.mark.asyncio
async def test_request_batcher_delivers_full_batch():
    batcher = RequestBatcher(3, 1.0)

    async def consumer():
        requests, future = await batcher.batches.get()
        future.set_result([RpcResponse(r.id, r.payload) for r in requests])
        return [r.id for r in requests]

    consumer_task = asyncio.create_task(consumer())
    results = await asyncio.gather(
        *(batcher.add_request(RpcRequest(i, "echo", b"x")) for i in range(1, 4))
    )
    assert await consumer_task == [1, 2, 3]
    assert all([r.id for r in res] == [1, 2, 3] for res in results)


@pytest.mark.asyncio
async def test_request_batcher_times_out_on_partial_batch():
    batcher = RequestBatcher(3, 0.05)
    with pytest.raises(NetworkError, match="Batch timeout"):
        await batcher.add_request(RpcRequest(1, "test", b"test"))
    assert batcher.batches.empty()


@pytest.mark.asyncio
async def test_request_batcher_cancelled_batch():
    batcher = RequestBatcher(1, 1.0)

    async def consumer():
        _requests, future = await batcher.batches.get()
        future.cancel()

    task = asyncio.create_task(consumer())
    with pytest.raises(NetworkError, match="Response channel closed"):
        await batcher.add_request(RpcRequest(1, "test", b""))
    await task
    assert batcher.batches.empty()