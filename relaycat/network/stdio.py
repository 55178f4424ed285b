"""
Process standard streams as asyncio byte sources and sinks.

Pipes, sockets and character devices are attached to the event loop
directly. Regular files (e.g. `relaycat host 80 < request.bin`) cannot be,
so they fall back to plain file I/O. A terminal on stdout is also written
directly, leaving its blocking mode untouched.
"""

import asyncio
import logging
import sys
from typing import BinaryIO, Optional, Tuple

from .relay import ByteSink, ByteSource

logger = logging.getLogger(__name__)


class StreamSink:
    """Sink that writes through an asyncio StreamWriter."""

    def __init__(self, writer: asyncio.StreamWriter):
        self.writer = writer

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()


class FileSink:
    """Sink for a regular file; each chunk is flushed as it arrives."""

    def __init__(self, fileobj: BinaryIO):
        self.fileobj = fileobj

    async def write(self, data: bytes) -> None:
        self.fileobj.write(data)
        self.fileobj.flush()


class FileSource:
    """Source for a regular file, read in a worker thread."""

    def __init__(self, fileobj: BinaryIO):
        self.fileobj = fileobj

    async def read(self, size: int) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.fileobj.read, size)


async def open_stdio(
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> Tuple[ByteSource, ByteSink]:
    """
    Attach standard input and output to the running loop.

    Args:
        stdin: Binary input file (defaults to sys.stdin.buffer)
        stdout: Binary output file (defaults to sys.stdout.buffer)

    Returns:
        (source, sink) pair for a RelaySession
    """
    loop = asyncio.get_running_loop()
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    source: ByteSource
    try:
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stdin)
        source = reader
    except ValueError:
        logger.debug("Standard input is a regular file, reading it directly")
        source = FileSource(stdin)

    sink: ByteSink
    if stdout.isatty():
        # A pipe transport would switch the terminal, shared with stderr, to non-blocking
        logger.debug("Standard output is a terminal, writing it directly")
        return source, FileSink(stdout)

    try:
        transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
        sink = StreamSink(asyncio.StreamWriter(transport, protocol, None, loop))
    except ValueError:
        logger.debug("Standard output is a regular file, writing it directly")
        sink = FileSink(stdout)

    return source, sink
