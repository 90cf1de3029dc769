from __future__ import annotations

import asyncio

from powerload.loadgen.pool import BUFFER_SIZE, BufferPool, TcpConnectionPool, UdpConnectionPool


class FakeSocket:
    def __init__(self) -> None:
        self.closed = False
        self.peer_closed = False

    def fileno(self) -> int:
        return -1 if self.closed else 42

    def recv(self, size: int, flags: int = 0) -> bytes:
        if self.peer_closed:
            return b""
        raise BlockingIOError

    def close(self) -> None:
        self.closed = True


class FakeTcpPool(TcpConnectionPool):
    def __init__(self, connect_delay: float = 0.0) -> None:
        super().__init__()
        self.opened: list[tuple[str, int]] = []
        self.sockets: list[FakeSocket] = []
        self._connect_delay = connect_delay

    async def _open(self, host: str, port: int) -> FakeSocket:  # type: ignore[override]
        self.opened.append((host, port))
        if self._connect_delay:
            await asyncio.sleep(self._connect_delay)
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock


class FakeUdpPool(UdpConnectionPool):
    async def _open(self, host: str, port: int) -> FakeSocket:  # type: ignore[override]
        return FakeSocket()


def test_buffer_pool_recycles_buffers() -> None:
    pool = BufferPool()
    first = pool.acquire()
    assert len(first) == BUFFER_SIZE
    pool.release(first)
    assert len(pool) == 1
    assert pool.acquire() is first
    assert len(pool) == 0


def test_buffer_pool_rejects_foreign_sizes() -> None:
    pool = BufferPool(size=16)
    pool.release(bytearray(32))
    assert len(pool) == 0
    fresh = pool.acquire()
    assert len(fresh) == 16


def test_live_tcp_connection_is_reused() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool()
        first = await pool.get_or_create("example.com", 8080)
        second = await pool.get_or_create("example.com", 8080)
        assert first is second
        return pool

    pool = asyncio.run(scenario())
    assert pool.opened == [("example.com", 8080)]
    assert pool.connections_opened == 1


def test_dead_tcp_connection_reconnects_once() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool()
        first = await pool.get_or_create("example.com", 8080)
        first.sock.peer_closed = True
        second = await pool.get_or_create("example.com", 8080)
        third = await pool.get_or_create("example.com", 8080)
        assert second is not first
        assert second is third
        assert first.closed
        return pool

    pool = asyncio.run(scenario())
    assert len(pool.opened) == 2


def test_concurrent_misses_open_a_single_connection() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool(connect_delay=0.01)
        entries = await asyncio.gather(*(pool.get_or_create("h", 1) for _ in range(10)))
        assert all(entry is entries[0] for entry in entries)
        return pool

    pool = asyncio.run(scenario())
    assert len(pool.opened) == 1


def test_destinations_are_keyed_separately() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool()
        a = await pool.get_or_create("h", 1)
        b = await pool.get_or_create("h", 2)
        assert a.key == "h:1"
        assert b.key == "h:2"
        return pool

    pool = asyncio.run(scenario())
    assert len(pool) == 2


def test_discard_forces_reconnect() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool()
        entry = await pool.get_or_create("h", 1)
        pool.discard(entry)
        assert entry.closed
        assert len(pool) == 0
        await pool.get_or_create("h", 1)
        return pool

    pool = asyncio.run(scenario())
    assert len(pool.opened) == 2


def test_close_tears_down_every_connection() -> None:
    async def scenario() -> FakeTcpPool:
        pool = FakeTcpPool()
        await pool.get_or_create("h", 1)
        await pool.get_or_create("h", 2)
        pool.close()
        return pool

    pool = asyncio.run(scenario())
    assert len(pool) == 0
    assert all(sock.closed for sock in pool.sockets)


def test_udp_entry_lives_until_closed() -> None:
    async def scenario() -> None:
        pool = FakeUdpPool()
        first = await pool.get_or_create("h", 53)
        assert await pool.get_or_create("h", 53) is first
        first.sock.close()
        assert await pool.get_or_create("h", 53) is not first
        assert pool.connections_opened == 2

    asyncio.run(scenario())
