"""
Network side of relaycat.

This module provides:
- TCP and UDP connection endpoints
- UDP rendezvous (first sender becomes the peer)
- The bidirectional relay session
- Connection setup (dial, listen, accept)
"""

from .endpoint import (
    Endpoint,
    EndpointClosedError,
    TCPEndpoint,
    DatagramEndpoint,
    format_address,
)
from .rendezvous import (
    WriteOnce,
    UDPRendezvous,
)
from .relay import (
    Direction,
    CopyResult,
    SessionOutcome,
    RelaySession,
    RelayWriteError,
    copy_stream,
    relay,
)
from .connect import (
    ConnectionSetupError,
    Target,
    establish,
    resolve,
    dial_tcp,
    accept_tcp,
    dial_udp,
    listen_udp,
)
from .stdio import open_stdio

__all__ = [
    "Endpoint",
    "EndpointClosedError",
    "TCPEndpoint",
    "DatagramEndpoint",
    "format_address",
    "WriteOnce",
    "UDPRendezvous",
    "Direction",
    "CopyResult",
    "SessionOutcome",
    "RelaySession",
    "RelayWriteError",
    "copy_stream",
    "relay",
    "ConnectionSetupError",
    "Target",
    "establish",
    "resolve",
    "dial_tcp",
    "accept_tcp",
    "dial_udp",
    "listen_udp",
    "open_stdio",
]
