"""
relaycat - relay stdin/stdout over a single TCP or UDP connection

Connect to a peer (or wait for one) and copy bytes both ways until either
side closes.

Example:
    >>> from relaycat import Target, establish, open_stdio, relay
    >>> endpoint = await establish(Target(host="localhost", port=9000))
    >>> source, sink = await open_stdio()
    >>> outcome = await relay(endpoint, source, sink)
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .network import (
    RelaySession,
    SessionOutcome,
    Target,
    establish,
    open_stdio,
    relay,
)

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "RelaySession",
    "SessionOutcome",
    "Target",
    "establish",
    "open_stdio",
    "relay",
]
