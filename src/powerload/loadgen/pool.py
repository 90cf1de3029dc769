from __future__ import annotations

import asyncio
import logging
import socket
import sys
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8192

# Linux values; the socket module does not export them on every build.
_IP_MTU_DISCOVER = getattr(socket, "IP_MTU_DISCOVER", 10)
_IP_PMTUDISC_DO = getattr(socket, "IP_PMTUDISC_DO", 2)


class BufferPool:
    """Recycles fixed-size read buffers across requests."""

    def __init__(self, size: int = BUFFER_SIZE) -> None:
        self.size = size
        self._free: deque[bytearray] = deque()

    def acquire(self) -> bytearray:
        try:
            return self._free.pop()
        except IndexError:
            return bytearray(self.size)

    def release(self, buffer: bytearray) -> None:
        if len(buffer) != self.size:
            return
        self._free.append(buffer)

    def __len__(self) -> int:
        return len(self._free)


@dataclass(slots=True)
class PooledConnection:
    key: str
    sock: socket.socket
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sock.close()

    def drain(self, scratch: bytearray) -> bool:
        """Throw away bytes an earlier exchange left unread.

        Returns False once the stream has hit EOF or errored.
        """
        while True:
            try:
                if self.sock.recv_into(scratch) == 0:
                    return False
            except BlockingIOError:
                return True
            except OSError:
                return False


class ConnectionPool:
    """One cached socket per ``host:port`` destination.

    Lookups of a live entry take no lock. Creating or replacing an entry
    happens under a lock scoped to that destination, so a slow connect to one
    host never stalls requests to another.
    """

    socket_type: int = socket.SOCK_STREAM

    def __init__(self, connect_timeout_sec: float = 5.0) -> None:
        self.connect_timeout_sec = connect_timeout_sec
        self.connections_opened = 0
        self._entries: dict[str, PooledConnection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def key_for(host: str, port: int) -> str:
        return f"{host}:{port}"

    async def get_or_create(self, host: str, port: int) -> PooledConnection:
        key = self.key_for(host, port)
        entry = self._entries.get(key)
        if entry is not None and not entry.closed and self._is_alive(entry.sock):
            return entry

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.closed and self._is_alive(entry.sock):
                    return entry
                logger.debug("Replacing dead connection to %s", key)
                self._entries.pop(key, None)
                entry.close()
            sock = await self._open(host, port)
            self.connections_opened += 1
            entry = PooledConnection(key=key, sock=sock)
            self._entries[key] = entry
            logger.debug("Opened %s connection to %s", self.__class__.__name__, key)
            return entry

    def discard(self, entry: PooledConnection) -> None:
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
        entry.close()

    def close(self) -> None:
        entries = list(self._entries.values())
        self._entries.clear()
        self._locks.clear()
        for entry in entries:
            entry.close()
        if entries:
            logger.debug("Closed %d pooled connection(s)", len(entries))

    def __len__(self) -> int:
        return len(self._entries)

    async def _open(self, host: str, port: int) -> socket.socket:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=self.socket_type)
        family, sock_type, proto, _, address = infos[0]
        sock = socket.socket(family, sock_type, proto)
        try:
            sock.setblocking(False)
            self._configure(sock, family)
            await asyncio.wait_for(loop.sock_connect(sock, address), self.connect_timeout_sec)
        except BaseException:
            sock.close()
            raise
        return sock

    def _configure(self, sock: socket.socket, family: int) -> None:
        pass

    def _is_alive(self, sock: socket.socket) -> bool:
        return sock.fileno() != -1


class TcpConnectionPool(ConnectionPool):
    socket_type = socket.SOCK_STREAM

    def _configure(self, sock: socket.socket, family: int) -> None:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

    def _is_alive(self, sock: socket.socket) -> bool:
        if sock.fileno() == -1:
            return False
        try:
            data = sock.recv(1, socket.MSG_PEEK)
        except BlockingIOError:
            return True
        except OSError:
            return False
        # An empty peek on a readable socket means the peer sent FIN.
        return bool(data)


class UdpConnectionPool(ConnectionPool):
    socket_type = socket.SOCK_DGRAM

    def _configure(self, sock: socket.socket, family: int) -> None:
        if family != socket.AF_INET or not sys.platform.startswith("linux"):
            return
        try:
            sock.setsockopt(socket.IPPROTO_IP, _IP_MTU_DISCOVER, _IP_PMTUDISC_DO)
        except OSError as exc:
            logger.debug("Could not disable fragmentation: %s", exc)
