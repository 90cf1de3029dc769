from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol

import httpx

from powerload.config import LoadTestConfig, TransportProtocol
from powerload.errors import ConfigurationError
from powerload.loadgen.pool import (
    BufferPool,
    ConnectionPool,
    PooledConnection,
    TcpConnectionPool,
    UdpConnectionPool,
)
from powerload.metrics import RequestOutcome, elapsed_ms_since

logger = logging.getLogger(__name__)

USER_AGENT = "PowerLoadTest/1.0"
TIMEOUT_MESSAGE = "Request timed out"

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class Sender(Protocol):
    async def send(self, config: LoadTestConfig) -> RequestOutcome:
        ...

    async def aclose(self) -> None:
        ...


class HttpSender:
    def __init__(
        self,
        config: LoadTestConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": USER_AGENT}
        headers.update(config.headers)
        self._client = httpx.AsyncClient(
            timeout=config.timeout_sec,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    async def send(self, config: LoadTestConfig) -> RequestOutcome:
        method = config.method.upper()
        content = None
        headers = None
        if config.body and method in _BODY_METHODS:
            content = config.payload
            if "content-type" not in self._client.headers:
                headers = {"Content-Type": "application/json; charset=utf-8"}

        started = time.perf_counter()
        try:
            resp = await self._client.request(method, config.target, content=content, headers=headers)
        except httpx.TimeoutException:
            return RequestOutcome.failed(started, TIMEOUT_MESSAGE, is_timeout=True)
        except httpx.HTTPError as exc:
            return RequestOutcome.failed(started, f"Request failed: {exc}")
        except Exception as exc:
            return RequestOutcome.failed(started, f"Unexpected error: {exc}")
        elapsed = elapsed_ms_since(started)
        return RequestOutcome(
            success=200 <= resp.status_code < 400,
            elapsed_ms=elapsed,
            status_code=resp.status_code,
            content_length=len(resp.content or b""),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class _NetworkClock:
    """Accumulates time spent on the wire, leaving out waits for a shared connection."""

    __slots__ = ("_spent", "_mark")

    def __init__(self) -> None:
        self._spent = 0.0
        self._mark: float | None = None

    def start(self) -> None:
        self._mark = time.perf_counter()

    def stop(self) -> None:
        if self._mark is not None:
            self._spent += time.perf_counter() - self._mark
            self._mark = None

    @property
    def elapsed_sec(self) -> float:
        running = time.perf_counter() - self._mark if self._mark is not None else 0.0
        return self._spent + running

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_sec * 1000.0

    def remaining(self, budget_sec: float) -> float:
        left = budget_sec - self.elapsed_sec
        if left <= 0:
            raise asyncio.TimeoutError
        return left


class _SocketSender:
    """Shared round trip for the raw socket transports.

    Each pooled connection carries one exchange at a time. The request deadline
    and the latency clock run only while connecting and while holding the
    connection, so queueing behind a sibling request costs neither. A connection
    that fails or times out is dropped so the next request reconnects.
    """

    def __init__(self, pool: ConnectionPool, buffers: BufferPool) -> None:
        self.pool = pool
        self.buffers = buffers

    async def send(self, config: LoadTestConfig) -> RequestOutcome:
        buffer = self.buffers.acquire()
        clock = _NetworkClock()
        try:
            received = await self._round_trip(config, buffer, clock)
        except (asyncio.TimeoutError, TimeoutError):
            return self._failed(clock, TIMEOUT_MESSAGE, is_timeout=True)
        except OSError as exc:
            return self._failed(clock, f"Request failed: {exc}")
        except Exception as exc:
            return self._failed(clock, f"Unexpected error: {exc}")
        finally:
            clock.stop()
            self.buffers.release(buffer)
        return RequestOutcome(success=True, elapsed_ms=clock.elapsed_ms, content_length=received)

    async def aclose(self) -> None:
        self.pool.close()

    async def _round_trip(self, config: LoadTestConfig, buffer: bytearray, clock: _NetworkClock) -> int:
        loop = asyncio.get_running_loop()
        while True:
            clock.start()
            try:
                conn = await asyncio.wait_for(
                    self.pool.get_or_create(config.host, config.port),
                    clock.remaining(config.timeout_sec),
                )
            finally:
                clock.stop()
            async with conn.lock:
                if conn.closed or not self._prepare(conn, buffer):
                    self._drop(conn)
                    continue
                clock.start()
                try:
                    received = await asyncio.wait_for(
                        self._exchange(loop, conn, config.payload, buffer),
                        clock.remaining(config.timeout_sec),
                    )
                except BaseException:
                    self._drop(conn)
                    raise
                finally:
                    clock.stop()
                if not self._reusable(received, buffer):
                    self._drop(conn)
                return received

    async def _exchange(
        self,
        loop: asyncio.AbstractEventLoop,
        conn: PooledConnection,
        payload: bytes,
        buffer: bytearray,
    ) -> int:
        if payload:
            await loop.sock_sendall(conn.sock, payload)
        return await loop.sock_recv_into(conn.sock, buffer)

    def _prepare(self, conn: PooledConnection, buffer: bytearray) -> bool:
        return True

    def _reusable(self, received: int, buffer: bytearray) -> bool:
        return True

    def _failed(self, clock: _NetworkClock, message: str, *, is_timeout: bool = False) -> RequestOutcome:
        return RequestOutcome(
            success=False,
            elapsed_ms=clock.elapsed_ms,
            error_message=message,
            is_timeout=is_timeout,
        )

    def _drop(self, conn: PooledConnection) -> None:
        logger.debug("Dropping connection to %s", conn.key)
        self.pool.discard(conn)


class TcpSender(_SocketSender):
    def __init__(self, pool: TcpConnectionPool, buffers: BufferPool) -> None:
        super().__init__(pool, buffers)

    def _prepare(self, conn: PooledConnection, buffer: bytearray) -> bool:
        # Late bytes from an earlier reply must not be read as this request's answer.
        return conn.drain(buffer)

    def _reusable(self, received: int, buffer: bytearray) -> bool:
        # EOF, or a full buffer that may have left the rest of the reply unread.
        return 0 < received < len(buffer)


class UdpSender(_SocketSender):
    def __init__(self, pool: UdpConnectionPool, buffers: BufferPool) -> None:
        super().__init__(pool, buffers)


def sender_for(config: LoadTestConfig, buffers: BufferPool | None = None) -> Sender:
    """Build a run-scoped sender with fresh pools for the configured protocol."""
    if buffers is None:
        buffers = BufferPool()
    connect_timeout = config.timeout_sec
    if config.protocol is TransportProtocol.HTTP:
        return HttpSender(config)
    if config.protocol is TransportProtocol.TCP:
        return TcpSender(TcpConnectionPool(connect_timeout_sec=connect_timeout), buffers)
    if config.protocol is TransportProtocol.UDP:
        return UdpSender(UdpConnectionPool(connect_timeout_sec=connect_timeout), buffers)
    msg = f"Unsupported protocol: {config.protocol}"
    raise ConfigurationError(msg)
