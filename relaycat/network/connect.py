"""
Connection setup for relay sessions.

Turns a Target (protocol, mode, host, port) into a live Endpoint:
- TCP connect: resolve, optionally bind the source port, dial
- TCP listen: accept exactly one connection, then stop listening
- UDP connect: resolve, open a connected datagram socket
- UDP listen: bind and wait for the peer to speak first

Every failure is raised as ConnectionSetupError.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..config import DEFAULT_BIND_HOST
from .endpoint import Address, DatagramEndpoint, Endpoint, TCPEndpoint, format_address
from .rendezvous import UDPRendezvous

logger = logging.getLogger(__name__)


class ConnectionSetupError(Exception):
    """Resolving, binding, dialing or listening failed."""


@dataclass
class Target:
    """Where and how to connect."""
    port: int
    host: Optional[str] = None  # None in listen mode
    udp: bool = False
    listen: bool = False
    source_port: Optional[int] = None

    @property
    def protocol(self) -> str:
        return "udp" if self.udp else "tcp"

    def __str__(self) -> str:
        if self.listen:
            return f"{self.protocol} listen :{self.port}"
        return f"{self.protocol} {self.host}:{self.port}"


async def resolve(host: str, port: int, udp: bool = False) -> List[Tuple[int, Address]]:
    """
    Resolve host and port to every usable socket address, in resolver order.

    Returns:
        List of (address family, sockaddr)
    """
    loop = asyncio.get_running_loop()
    socktype = socket.SOCK_DGRAM if udp else socket.SOCK_STREAM

    try:
        infos = await loop.getaddrinfo(host, port, type=socktype)
    except socket.gaierror as e:
        raise ConnectionSetupError(f"Could not resolve {host}: {e}") from e

    addresses = []
    for family, _, _, _, sockaddr in infos:
        if (family, sockaddr) not in addresses:
            addresses.append((family, sockaddr))

    if not addresses:
        raise ConnectionSetupError(f"Could not resolve {host}")

    kind = "UDP" if udp else "TCP"
    logger.info(f"Has been resolved {kind} address: {', '.join(format_address(a) for _, a in addresses)}")
    return addresses


def _source_address(family: int, source_port: Optional[int]) -> Optional[Address]:
    """Local bind address for the given source port, matching family."""
    if not source_port:
        return None
    wildcard = "::" if family == socket.AF_INET6 else "0.0.0.0"
    return (wildcard, source_port)


async def dial_tcp(host: str, port: int, source_port: Optional[int] = None) -> TCPEndpoint:
    """Connect to host:port over TCP, trying each resolved address in turn."""
    last_error: Optional[OSError] = None

    for family, sockaddr in await resolve(host, port):
        try:
            reader, writer = await asyncio.open_connection(
                sockaddr[0],
                sockaddr[1],
                family=family,
                local_addr=_source_address(family, source_port),
            )
        except OSError as e:
            logger.debug(f"Connect to {format_address(sockaddr)} failed: {e}")
            last_error = e
            continue

        logger.info(f"Connected to {host}:{port}")
        return TCPEndpoint(reader, writer)

    raise ConnectionSetupError(f"Could not connect to {host}:{port}: {last_error}") from last_error


async def accept_tcp(port: int, host: Optional[str] = DEFAULT_BIND_HOST) -> TCPEndpoint:
    """
    Listen on host:port and accept a single TCP connection.

    With host None the listener binds every local interface, IPv4 and IPv6.
    """
    loop = asyncio.get_running_loop()
    accepted: "asyncio.Future[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]" = loop.create_future()

    def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if accepted.done():
            # Only one connection per session
            writer.close()
            return
        accepted.set_result((reader, writer))

    try:
        server = await asyncio.start_server(on_connect, host, port)
    except OSError as e:
        raise ConnectionSetupError(f"Could not listen on {host or '*'}:{port}: {e}") from e

    logger.info(f"Listening on :{port}")

    try:
        reader, writer = await accepted
    finally:
        # Stop accepting; wait_closed() would also wait for the accepted connection
        server.close()

    endpoint = TCPEndpoint(reader, writer)
    logger.info(f"Connect from {format_address(endpoint.remote_address)}")
    return endpoint


async def dial_udp(host: str, port: int, source_port: Optional[int] = None) -> UDPRendezvous:
    """Open a UDP socket connected to host:port, trying each resolved address in turn."""
    last_error: Optional[OSError] = None

    for family, sockaddr in await resolve(host, port, udp=True):
        try:
            endpoint = await DatagramEndpoint.create(
                local_addr=_source_address(family, source_port),
                remote_addr=sockaddr,
                family=family,
            )
        except OSError as e:
            logger.debug(f"UDP socket to {format_address(sockaddr)} failed: {e}")
            last_error = e
            continue

        return UDPRendezvous(endpoint, peer=endpoint.remote_address)

    raise ConnectionSetupError(f"Could not open UDP socket to {host}:{port}: {last_error}") from last_error


async def _bind_udp(port: int, host: Optional[str]) -> DatagramEndpoint:
    if host is not None:
        last_error: Optional[OSError] = None
        for family, sockaddr in await resolve(host, port, udp=True):
            try:
                return await DatagramEndpoint.create(local_addr=sockaddr, family=family)
            except OSError as e:
                last_error = e
        raise last_error

    # All interfaces: one dual-stack socket where IPv6 is available
    try:
        return await DatagramEndpoint.create(local_addr=("::", port), family=socket.AF_INET6, dual_stack=True)
    except OSError as e:
        logger.debug(f"Dual-stack UDP bind failed, using IPv4 only: {e}")
        return await DatagramEndpoint.create(local_addr=("0.0.0.0", port))


async def listen_udp(port: int, host: Optional[str] = DEFAULT_BIND_HOST) -> UDPRendezvous:
    """
    Bind a UDP socket; the peer is learned from the first datagram.

    With host None the socket accepts IPv4 and IPv6 senders.
    """
    try:
        endpoint = await _bind_udp(port, host)
    except OSError as e:
        raise ConnectionSetupError(f"Could not listen on {host or '*'}:{port}: {e}") from e

    logger.info(f"Listening on :{port}")
    logger.info("Waiting for remote connection")
    return UDPRendezvous(endpoint)


async def establish(target: Target, bind_host: Optional[str] = DEFAULT_BIND_HOST) -> Endpoint:
    """
    Open the endpoint described by target.

    Args:
        target: Protocol, mode and address
        bind_host: Local interface for listen mode, None for all of them

    Returns:
        Live endpoint ready for a RelaySession

    Raises:
        ConnectionSetupError: on any resolve/bind/dial/listen failure
    """
    if target.udp:
        logger.info("Work with UDP protocol")
        if target.listen:
            return await listen_udp(target.port, bind_host)
        return await dial_udp(target.host, target.port, target.source_port)

    logger.info("Work with TCP protocol")
    if target.listen:
        return await accept_tcp(target.port, bind_host)
    return await dial_tcp(target.host, target.port, target.source_port)
