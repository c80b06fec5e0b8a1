"""In-memory RPC: requests, connection pooling, batching and retries."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace

from clusterkit.errors import DistributedError, NetworkError

Handler = Callable[[bytes], bytes]
AsyncHandler = Callable[[bytes], Awaitable[bytes]]


@dataclass
class RpcRequest:
    """A single remote call."""

    id: int
    method: str
    payload: bytes
    timeout: float | None = None


@dataclass
class RpcResponse:
    """Outcome of one call: ``value`` on success, ``error`` on failure."""

    id: int
    value: bytes = b""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchRpcRequest:
    requests: list[RpcRequest]
    batch_id: int


@dataclass
class BatchRpcResponse:
    responses: list[RpcResponse]
    batch_id: int


@dataclass
class ConnectionInfo:
    """Bookkeeping for one pooled connection."""

    id: str
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    is_healthy: bool = True
    request_count: int = 0


@dataclass
class ConnectionPoolConfig:
    """Pool limits; all durations are in seconds."""

    max_connections: int = 10
    min_connections: int = 2
    connection_timeout: float = 5.0
    idle_timeout: float = 300.0
    health_check_interval: float = 30.0


class RpcClient(ABC):
    """Something that can invoke remote methods."""

    @abstractmethod
    def call(self, method: str, payload: bytes) -> bytes:
        """Invoke ``method`` synchronously; raise DistributedError on failure."""

    async def call_async(self, method: str, payload: bytes) -> bytes:
        """Invoke ``method`` from a coroutine."""
        return self.call(method, payload)

    async def call_batch(self, requests: Sequence[RpcRequest]) -> list[RpcResponse]:
        """Invoke every request, collecting per-request results."""
        responses = []
        for request in requests:
            try:
                value = await self.call_async(request.method, request.payload)
            except DistributedError as exc:
                responses.append(RpcResponse(request.id, error=str(exc)))
            else:
                responses.append(RpcResponse(request.id, value))
        return responses


class RpcServer(ABC):
    """Something that methods can be registered on."""

    @abstractmethod
    def register(self, method: str, handler: Handler) -> None:
        """Register a synchronous handler."""

    @abstractmethod
    def register_async(self, method: str, handler: AsyncHandler) -> None:
        """Register a coroutine handler."""


class ConnectionPool:
    """Hands out connection ids, reusing healthy, recently used ones."""

    def __init__(self, config: ConnectionPoolConfig | None = None) -> None:
        self.config = config or ConnectionPoolConfig()
        self._connections: dict[str, ConnectionInfo] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def get_connection(self, endpoint: str) -> str:
        """Return a usable connection id; raise NetworkError when the pool is full."""
        with self._lock:
            now = time.monotonic()
            for conn_id, conn in self._connections.items():
                if conn.is_healthy and now - conn.last_used < self.config.idle_timeout:
                    conn.last_used = now
                    conn.request_count += 1
                    return conn_id
            if len(self._connections) >= self.config.max_connections:
                raise NetworkError("Connection pool exhausted")
            conn_id = f"conn_{next(self._ids)}"
            self._connections[conn_id] = ConnectionInfo(conn_id, request_count=1)
            return conn_id

    def release_connection(self, connection_id: str) -> None:
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                conn.last_used = time.monotonic()

    def mark_unhealthy(self, connection_id: str) -> None:
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                conn.is_healthy = False

    def cleanup_expired(self) -> None:
        """Drop unhealthy or idle connections while above the minimum size."""
        with self._lock:
            if len(self._connections) <= self.config.min_connections:
                return
            now = time.monotonic()
            self._connections = {
                conn_id: conn
                for conn_id, conn in self._connections.items()
                if conn.is_healthy and now - conn.last_used < self.config.idle_timeout
            }

    def stats(self) -> dict[str, ConnectionInfo]:
        """Return a snapshot of every pooled connection."""
        with self._lock:
            return {conn_id: replace(conn) for conn_id, conn in self._connections.items()}


class RequestBatcher:
    """Groups requests into batches of ``batch_size``.

    Full batches are put on ``batches`` as ``(requests, future)`` pairs; the
    consumer answers a batch by setting the future's result to its responses.
    """

    def __init__(self, batch_size: int, batch_timeout: float) -> None:
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.batches: asyncio.Queue[
            tuple[list[RpcRequest], asyncio.Future[list[RpcResponse]]]
        ] = asyncio.Queue()
        self._pending: list[RpcRequest] = []
        self._waiter: asyncio.Future[list[RpcResponse]] | None = None

    async def add_request(self, request: RpcRequest) -> list[RpcResponse]:
        """Queue ``request`` and wait for the responses of its batch."""
        if self._waiter is None:
            self._waiter = asyncio.get_running_loop().create_future()
        waiter = self._waiter
        self._pending.append(request)
        if len(self._pending) >= self.batch_size:
            batch, self._pending = self._pending, []
            self._waiter = None
            self.batches.put_nowait((batch, waiter))
        try:
            return await asyncio.wait_for(asyncio.shield(waiter), self.batch_timeout)
        except asyncio.TimeoutError:
            raise NetworkError("Batch timeout") from None
        except asyncio.CancelledError:
            if waiter.cancelled():
                raise NetworkError("Response channel closed") from None
            raise


class InMemoryRpcServer(RpcServer):
    """Method registry served within the same process."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._async_handlers: dict[str, AsyncHandler] = {}
        self._lock = threading.RLock()

    def register(self, method: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[method] = handler

    def register_async(self, method: str, handler: AsyncHandler) -> None:
        with self._lock:
            self._async_handlers[method] = handler

    def _dispatch(self, method: str, payload: bytes) -> bytes:
        with self._lock:
            handler = self._handlers.get(method)
        if handler is None:
            raise NetworkError(f"method not found: {method}")
        return handler(payload)

    async def _dispatch_async(self, method: str, payload: bytes) -> bytes:
        with self._lock:
            async_handler = self._async_handlers.get(method)
        if async_handler is not None:
            result = async_handler(payload)
            return await result if inspect.isawaitable(result) else result
        return self._dispatch(method, payload)

    async def handle_batch(self, batch_request: BatchRpcRequest) -> BatchRpcResponse:
        """Run every request of a batch, reporting unknown methods per request."""
        responses = []
        for request in batch_request.requests:
            try:
                value = await self._dispatch_async(request.method, request.payload)
            except NetworkError:
                responses.append(
                    RpcResponse(request.id, error=f"Method not found: {request.method}")
                )
            else:
                responses.append(RpcResponse(request.id, value))
        return BatchRpcResponse(responses, batch_request.batch_id)


class InMemoryRpcClient(RpcClient):
    """Client calling an InMemoryRpcServer directly."""

    def __init__(
        self, server: InMemoryRpcServer, connection_pool: ConnectionPool | None = None
    ) -> None:
        self.server = server
        self.connection_pool = connection_pool or ConnectionPool()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def call(self, method: str, payload: bytes) -> bytes:
        """Call a synchronous handler; raise NetworkError if none is registered."""
        return self.server._dispatch(method, payload)

    async def call_async(self, method: str, payload: bytes) -> bytes:
        connection_id = await self.connection_pool.get_connection("localhost")
        try:
            return await self.server._dispatch_async(method, payload)
        finally:
            self.connection_pool.release_connection(connection_id)

    async def call_batch(self, requests: Sequence[RpcRequest]) -> list[RpcResponse]:
        batch = BatchRpcRequest(list(requests), self._next_id())
        return (await self.server.handle_batch(batch)).responses


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int
    retry_on_empty: bool = False
    backoff_base_ms: int | None = None

    def delay(self, attempt: int) -> float | None:
        """Exponential backoff in seconds for ``attempt``, or None without backoff."""
        if self.backoff_base_ms is None:
            return None
        return self.backoff_base_ms * (1 << min(attempt, 16)) / 1000.0


class RetryClient(RpcClient):
    """Wraps a client, retrying failed (and optionally empty) calls."""

    def __init__(self, inner: RpcClient, policy: RetryPolicy) -> None:
        self.inner = inner
        self.policy = policy

    def _sleep(self, attempt: int) -> None:
        delay = self.policy.delay(attempt)
        if delay is not None:
            time.sleep(delay)

    async def _sleep_async(self, attempt: int) -> None:
        delay = self.policy.delay(attempt)
        if delay is not None:
            await asyncio.sleep(delay)

    @staticmethod
    def _give_up(last_error: DistributedError | None) -> DistributedError:
        return last_error or NetworkError("retry failed")

    def call(self, method: str, payload: bytes) -> bytes:
        last_error: DistributedError | None = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                value = self.inner.call(method, payload)
            except DistributedError as exc:
                last_error = exc
            else:
                if not (self.policy.retry_on_empty and not value):
                    return value
            self._sleep(attempt)
        raise self._give_up(last_error)

    async def call_async(self, method: str, payload: bytes) -> bytes:
        last_error: DistributedError | None = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                value = await self.inner.call_async(method, payload)
            except DistributedError as exc:
                last_error = exc
            else:
                if not (self.policy.retry_on_empty and not value):
                    return value
            await self._sleep_async(attempt)
        raise self._give_up(last_error)

    async def call_batch(self, requests: Sequence[RpcRequest]) -> list[RpcResponse]:
        last_error: DistributedError | None = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                responses = await self.inner.call_batch(list(requests))
            except DistributedError as exc:
                last_error = exc
            else:
                has_empty = any(r.ok and not r.value for r in responses)
                if not (self.policy.retry_on_empty and has_empty):
                    return responses
            await self._sleep_async(attempt)
        raise self._give_up(last_error)