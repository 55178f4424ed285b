"""
Connection endpoints for the relay.

An endpoint is the network side of a relay session:
- TCPEndpoint wraps an established asyncio stream connection
- DatagramEndpoint wraps a bound (and optionally connected) UDP socket

Closing an endpoint is idempotent; only the first call touches the
underlying transport.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Address = Tuple[Any, ...]


class EndpointClosedError(ConnectionError):
    """Raised when reading from or writing to a closed endpoint."""


class Endpoint(ABC):
    """Abstract bidirectional byte channel to a network peer."""

    @property
    @abstractmethod
    def remote_address(self) -> Optional[Address]:
        """Peer address, or None while it is not known yet."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once close() has been called."""

    @abstractmethod
    async def read(self, size: int) -> bytes:
        """Read up to size bytes. Returns b"" on clean end-of-stream."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all of data to the peer."""

    @abstractmethod
    async def close(self) -> None:
        """Close the endpoint. Safe to call more than once."""


class TCPEndpoint(Endpoint):
    """A TCP connection to a peer."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self._closed = False
        self._remote = writer.get_extra_info("peername")

    @property
    def remote_address(self) -> Optional[Address]:
        return self._remote

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, size: int) -> bytes:
        if self._closed:
            raise EndpointClosedError(f"connection to {format_address(self._remote)} is closed")
        return await self._reader.read(size)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise EndpointClosedError(f"connection to {format_address(self._remote)} is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            # Peer already reset the connection; the socket is gone either way
            logger.debug(f"Error while closing {format_address(self._remote)}: {e}")

        logger.info(f"Connection from {format_address(self._remote)} is closed")


# Marks the receive queue as finished after the transport is lost
_LOST = object()


class _DatagramProtocol(asyncio.DatagramProtocol):
    """Feeds received datagrams and socket errors into the endpoint queue."""

    def __init__(self, queue: "asyncio.Queue[Any]"):
        self._queue = queue

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self._queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._queue.put_nowait(exc if exc is not None else _LOST)


class DatagramEndpoint:
    """
    A UDP socket driven through asyncio.

    Created either bound to a local port (listening) or connected to a
    remote address (dialing). Datagrams are delivered one per recvfrom()
    call, truncated to the requested size. Send failures are raised by
    sendto() itself.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._sock: Optional[socket.socket] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._closed = False
        self._lost: Optional[BaseException] = None
        self.remote_address: Optional[Address] = None

    @classmethod
    async def create(
        cls,
        local_addr: Optional[Address] = None,
        remote_addr: Optional[Address] = None,
        family: int = socket.AF_INET,
        dual_stack: bool = False,
    ) -> "DatagramEndpoint":
        """
        Open a UDP socket.

        Args:
            local_addr: (host, port) to bind, or None for an ephemeral port
            remote_addr: (host, port) to connect to, or None to accept any sender
            family: Address family of the socket
            dual_stack: For AF_INET6, also accept IPv4 (mapped) traffic

        Returns:
            Ready DatagramEndpoint
        """
        endpoint = cls()
        loop = asyncio.get_running_loop()

        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.setblocking(False)
            if dual_stack:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            if local_addr is not None:
                sock.bind(local_addr)
            if remote_addr is not None:
                await loop.sock_connect(sock, remote_addr)

            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(endpoint._queue),
                sock=sock,
            )
        except OSError:
            sock.close()
            raise

        endpoint._sock = sock
        endpoint._transport = transport
        if remote_addr is not None:
            endpoint.remote_address = sock.getpeername()
        return endpoint

    @property
    def local_address(self) -> Optional[Address]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    @property
    def connected(self) -> bool:
        return self.remote_address is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def recvfrom(self, size: int) -> Tuple[bytes, Address]:
        """
        Wait for the next datagram.

        Raises:
            EndpointClosedError: the socket was closed
            OSError: the socket reported an error (e.g. ICMP port unreachable)
        """
        if self._closed:
            raise EndpointClosedError("UDP socket is closed")
        if self._lost is not None:
            raise self._lost

        item = await self._queue.get()

        if item is _LOST or self._closed:
            raise EndpointClosedError("UDP socket is closed")
        if isinstance(item, BaseException):
            if self._transport is None or self._transport.is_closing():
                self._lost = item
            raise item

        data, addr = item
        if len(data) > size:
            logger.debug(f"Datagram from {format_address(addr)} truncated from {len(data)} to {size} bytes")
            data = data[:size]
        return data, addr

    async def sendto(self, data: bytes, addr: Optional[Address] = None) -> None:
        """
        Send one datagram. Connected sockets always send to their peer.

        Raises:
            EndpointClosedError: the socket was closed
            OSError: the datagram could not be sent (e.g. message too long)
        """
        if self._closed or self._sock is None:
            raise EndpointClosedError("UDP socket is closed")

        target = None if self.connected else addr

        # Datagrams already queued by the transport go out first
        if self._transport.get_write_buffer_size():
            self._transport.sendto(data, target)
            return

        try:
            if target is None:
                self._sock.send(data)
            else:
                self._sock.sendto(data, target)
        except BlockingIOError:
            # Send buffer is full; let the transport wait for writability
            self._transport.sendto(data, target)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._transport is not None:
            self._transport.close()
        # Wake any reader still waiting on the queue
        self._queue.put_nowait(_LOST)


def format_address(addr: Union[Address, str, None]) -> str:
    """Render a socket address as host:port."""
    if addr is None:
        return "<unknown>"
    if isinstance(addr, str):
        return addr
    host, port = addr[0], addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"
