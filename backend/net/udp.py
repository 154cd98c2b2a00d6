"""
Single-owner asyncio UDP endpoint.

One socket is bound per role run and handed by reference first to the
discovery session and then to the punching procedure. Received datagrams
are queued; transport errors and closure are delivered through the same
queue so that a pending receive always wakes up.
"""

import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator

from config import BIND_HOST, BIND_PORT
from errors import PeerUnreachableError, TransportError

logger = logging.getLogger(__name__)


class UdpProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol feeding a UdpEndpoint's receive queue."""

    def __init__(self, endpoint: "UdpEndpoint"):
        self.endpoint = endpoint

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self.endpoint._queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        if isinstance(exc, ConnectionRefusedError):
            error: TransportError = PeerUnreachableError(str(exc))
        else:
            logger.warning(f"UDP socket error: {exc}")
            error = TransportError(f"UDP socket error: {exc}")
        self.endpoint._queue.put_nowait((None, error))

    def connection_lost(self, exc: Exception | None) -> None:
        reason = f"UDP socket closed: {exc}" if exc else "UDP socket closed"
        self.endpoint._queue.put_nowait((None, TransportError(reason)))


class UdpEndpoint:
    """A bound UDP socket with awaitable receive."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def local_addr(self) -> tuple:
        if self._transport is None:
            raise TransportError("UDP endpoint is not open")
        return self._transport.get_extra_info("sockname")

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(self, host: str = BIND_HOST, port: int = BIND_PORT) -> None:
        loop = asyncio.get_running_loop()
        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setblocking(False)
            sock.bind((host, port))
            transport, _ = await loop.create_datagram_endpoint(
                lambda: UdpProtocol(self),
                sock=sock,
            )
        except OSError as e:
            if sock is not None:
                sock.close()
            raise TransportError(f"Cannot create UDP socket: {e}") from e
        self._transport = transport
        logger.debug(f"UDP endpoint bound to {self.local_addr[0]}:{self.local_addr[1]}")

    def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()

    def sendto(self, data: bytes, addr: tuple) -> None:
        if not self.is_open:
            raise TransportError("UDP endpoint is closed")
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            raise TransportError(f"Cannot send datagram to {addr[0]}:{addr[1]}: {e}") from e

    async def recvfrom(self) -> tuple[bytes, tuple]:
        """Wait for the next datagram; raises TransportError on socket failure."""
        data, addr_or_error = await self._queue.get()
        if data is None:
            raise addr_or_error
        return data, addr_or_error


@asynccontextmanager
async def open_endpoint(host: str = BIND_HOST, port: int = BIND_PORT) -> AsyncIterator[UdpEndpoint]:
    """Bind a UDP endpoint and guarantee it is closed on every exit path."""
    endpoint = UdpEndpoint()
    await endpoint.open(host, port)
    try:
        yield endpoint
    finally:
        endpoint.close()
