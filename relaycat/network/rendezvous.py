"""
UDP rendezvous.

UDP has no connection, so a listening relay learns its peer from the first
datagram that arrives and sends everything back to that address for the
rest of the session. The learned address lives in a write-once cell: later
datagrams from other senders are still relayed to output but never move
the outbound target.
"""

import asyncio
import logging
from typing import Generic, Optional, TypeVar

from .endpoint import Address, DatagramEndpoint, Endpoint, format_address

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WriteOnce(Generic[T]):
    """
    A value that can be set exactly once.

    The first set() wins and wakes every waiter; later calls are ignored
    and return False.
    """

    def __init__(self):
        self._value: Optional[T] = None
        self._event = asyncio.Event()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self, value: T) -> bool:
        """Store value if nothing is stored yet. Returns True if it was stored."""
        if self._event.is_set():
            return False
        self._value = value
        self._event.set()
        return True

    def get(self) -> Optional[T]:
        """Current value, or None if unset."""
        return self._value

    async def wait(self) -> T:
        """Block until a value is set and return it."""
        await self._event.wait()
        return self._value


class UDPRendezvous(Endpoint):
    """
    Presents a DatagramEndpoint as a stream endpoint.

    Each read() yields the payload of one datagram; each write() sends one
    datagram to the peer address. When the peer is not known yet, writes
    are dropped.
    """

    def __init__(self, endpoint: DatagramEndpoint, peer: Optional[Address] = None):
        """
        Args:
            endpoint: Bound UDP socket
            peer: Dialed address; None to learn it from the first datagram
        """
        self.endpoint = endpoint
        self.peer: WriteOnce[Address] = WriteOnce()
        if peer is not None:
            self.peer.set(peer)

    @property
    def remote_address(self) -> Optional[Address]:
        return self.peer.get()

    @property
    def closed(self) -> bool:
        return self.endpoint.closed

    async def wait_for_peer(self) -> Address:
        """Block until the peer address is known."""
        return await self.peer.wait()

    async def read(self, size: int) -> bytes:
        while True:
            data, addr = await self.endpoint.recvfrom(size)

            if self.peer.set(addr):
                logger.info(f"Connected from {format_address(addr)}")

            # An empty datagram is not end-of-stream
            if data:
                return data

    async def write(self, data: bytes) -> None:
        peer = self.peer.get()
        if peer is None:
            logger.debug(f"No remote address yet, dropping {len(data)} bytes")
            return

        logger.debug(f"Write to the remote address: {format_address(peer)}")
        await self.endpoint.sendto(data, peer)

    async def close(self) -> None:
        if self.endpoint.closed:
            return
        await self.endpoint.close()
        logger.info(f"Connection from {format_address(self.peer.get())} is closed")
