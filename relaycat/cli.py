"""
relaycat CLI - relay stdin/stdout over one TCP or UDP connection.
"""

import asyncio
import logging
import sys
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape

from .config import get_config
from .network import (
    ConnectionSetupError,
    RelayWriteError,
    SessionOutcome,
    Target,
    establish,
    open_stdio,
    relay,
)

# Relayed bytes own stdout; everything for humans goes to stderr
console = Console(stderr=True)
logger = logging.getLogger(__name__)

USAGE = "relaycat [-lu] [-p source port ] [-b buffer size ] [hostname ] [port]"


class ArgumentError(Exception):
    """Bad or missing command line input."""


def setup_logging(verbose: bool = False, fmt: str = "%(message)s"):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def parse_port(value: str, what: str, allow_zero: bool = False) -> int:
    """Parse a port number, rejecting anything outside 0/1..65535."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ArgumentError(f"{what} shall be not empty and have integer value") from None

    lowest = 0 if allow_zero else 1
    if not lowest <= port <= 65535:
        raise ArgumentError(f"{what} must be between {lowest} and 65535")
    return port


def parse_size(value: str) -> int:
    """Parse the transfer buffer size."""
    try:
        size = int(value)
    except ValueError:
        size = 0
    if size <= 0:
        raise ArgumentError("Buffer size must be a positive integer")
    return size


def parse_target(
    args: Tuple[str, ...],
    listen: bool = False,
    udp: bool = False,
    source_port: Optional[str] = None,
) -> Target:
    """
    Validate positional arguments and flags into a Target.

    Raises:
        ArgumentError: with a message for the user
    """
    parsed_source = None
    if source_port is not None:
        parsed_source = parse_port(source_port, "Source port", allow_zero=True)

    if listen:
        if len(args) < 1:
            raise ArgumentError("when you use -l option [port] is mandatory argument")
        if len(args) > 1:
            raise ArgumentError("when you use -l option only [port] is accepted")
        port = parse_port(args[0], "Destination port")
        return Target(port=port, udp=udp, listen=True, source_port=parsed_source)

    if len(args) < 2:
        raise ArgumentError("[hostname ] [port] are mandatory arguments")
    if len(args) > 2:
        raise ArgumentError("only [hostname ] [port] are accepted")
    port = parse_port(args[1], "Destination port")
    return Target(port=port, host=args[0], udp=udp, source_port=parsed_source)


async def _run_session(target: Target, bind_host: Optional[str], buffer_size: int) -> SessionOutcome:
    """Establish the endpoint and relay until one side closes."""
    endpoint = await establish(target, bind_host=bind_host)
    source, sink = await open_stdio()
    return await relay(endpoint, source, sink, buffer_size=buffer_size)


@click.command()
@click.option('-p', 'source_port', metavar='PORT', help='Source port to use for outgoing connections')
@click.option('-u', 'udp', is_flag=True, help='Use UDP instead of the default option of TCP')
@click.option('-l', 'listen', is_flag=True, help='Listen for an incoming connection instead of connecting')
@click.option('-b', '--buffer-size', metavar='BYTES', help='Transfer buffer size (UDP datagrams are truncated to it)')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.argument('args', nargs=-1)
def main(
    source_port: Optional[str],
    udp: bool,
    listen: bool,
    buffer_size: Optional[str],
    verbose: bool,
    args: Tuple[str, ...],
):
    """Relay standard input/output over a single TCP or UDP connection.

    \b
    Connect:  relaycat [-u] [-p PORT] HOSTNAME PORT
    Listen:   relaycat -l [-u] PORT
    """
    config = get_config()
    setup_logging(verbose, config.log_format)

    if not args and source_port is None and not (udp or listen):
        console.print(escape(USAGE))
        console.print(escape(main.get_help(click.get_current_context())))
        sys.exit(1)

    try:
        target = parse_target(args, listen=listen, udp=udp, source_port=source_port)
        size = config.buffer_size if buffer_size is None else parse_size(buffer_size)
    except ArgumentError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    logger.info(f"Source port: {'' if target.source_port is None else target.source_port}")
    logger.info(f"Protocol: {target.protocol}")
    if target.listen and target.source_port is not None:
        logger.warning("Source port is ignored in listen mode")

    logger.info(f"Hostname: {target.host or ''}")
    logger.info(f"Port: :{target.port}")

    try:
        asyncio.run(_run_session(target, config.bind_host, size))
    except ConnectionSetupError as e:
        logger.error(str(e))
        sys.exit(1)
    except RelayWriteError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
