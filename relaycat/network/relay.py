"""
Bidirectional relay between a network endpoint and local streams.

A session runs two copy tasks:
- inbound: endpoint -> output
- outbound: input -> endpoint

The first task to finish ends the session. Read errors end a task
quietly (logged as warnings); write errors abort the session by raising
RelayWriteError.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

from ..config import DEFAULT_BUFFER_SIZE
from .endpoint import Endpoint
from .rendezvous import WriteOnce

logger = logging.getLogger(__name__)


class ByteSource(Protocol):
    async def read(self, size: int) -> bytes: ...


class ByteSink(Protocol):
    async def write(self, data: bytes) -> None: ...


class Direction(Enum):
    """Direction of a copy task."""
    INBOUND = "endpoint -> output"
    OUTBOUND = "input -> endpoint"


class CopyResult(Enum):
    """How a copy task ended when it did not abort."""
    CLEAN = "clean"
    READ_ERROR = "read_error"


class SessionOutcome(Enum):
    """Which side ended the session."""
    REMOTE_CLOSED = "Remote connection is closed"
    LOCAL_TERMINATED = "Local program is terminated"


_OUTCOMES = {
    Direction.INBOUND: SessionOutcome.REMOTE_CLOSED,
    Direction.OUTBOUND: SessionOutcome.LOCAL_TERMINATED,
}


class RelayWriteError(Exception):
    """A copy task could not write to its destination."""

    def __init__(self, direction: Direction, cause: BaseException):
        super().__init__(f"Write error: {cause}")
        self.direction = direction
        self.cause = cause


async def copy_stream(
    source: ByteSource,
    sink: ByteSink,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    direction: Direction = Direction.INBOUND,
) -> CopyResult:
    """
    Copy chunks from source to sink until end-of-stream.

    Args:
        source: Anything with an async read(size)
        sink: Anything with an async write(data)
        buffer_size: Maximum bytes per chunk
        direction: Used for error reporting

    Returns:
        CopyResult.CLEAN on end-of-stream, CopyResult.READ_ERROR on a failed read

    Raises:
        RelayWriteError: writing to the sink failed
    """
    while True:
        try:
            data = await source.read(buffer_size)
        except OSError as e:
            logger.warning(f"Read error: {e}")
            return CopyResult.READ_ERROR

        if not data:
            return CopyResult.CLEAN

        try:
            await sink.write(data)
        except OSError as e:
            raise RelayWriteError(direction, e) from e


class RelaySession:
    """
    One endpoint paired with the local input and output streams.

    Usage:
        session = RelaySession(endpoint, source, sink)
        outcome = await session.run()
    """

    def __init__(
        self,
        endpoint: Endpoint,
        source: ByteSource,
        sink: ByteSink,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self.endpoint = endpoint
        self.source = source
        self.sink = sink
        self.buffer_size = buffer_size
        self.outcome: Optional[SessionOutcome] = None
        self._finished: WriteOnce[Direction] = WriteOnce()

    async def _pump(self, direction: Direction) -> CopyResult:
        if direction is Direction.INBOUND:
            source, sink = self.endpoint, self.sink
        else:
            source, sink = self.source, self.endpoint

        try:
            return await copy_stream(source, sink, self.buffer_size, direction)
        finally:
            # Decide the race before closing, closing wakes the other task
            self._finished.set(direction)
            await self.endpoint.close()

    async def run(self) -> SessionOutcome:
        """
        Relay until either direction finishes.

        Returns:
            Which side ended the session

        Raises:
            RelayWriteError: the first task to finish failed on a write
        """
        tasks = {
            Direction.INBOUND: asyncio.create_task(self._pump(Direction.INBOUND)),
            Direction.OUTBOUND: asyncio.create_task(self._pump(Direction.OUTBOUND)),
        }

        try:
            await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_COMPLETED)
            winner = await self._finished.wait()
            task = tasks[winner]

            # The winner may still be closing the endpoint
            await asyncio.wait([task])
            error = task.exception()
            if error is not None:
                raise error

        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks.values(), return_exceptions=True)
            await self.endpoint.close()

            for direction, result in zip(tasks, results):
                if isinstance(result, Exception):
                    logger.debug(f"{direction.value} ended after the session: {result}")

        self.outcome = _OUTCOMES[winner]
        logger.info(self.outcome.value)
        return self.outcome


async def relay(
    endpoint: Endpoint,
    source: ByteSource,
    sink: ByteSink,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> SessionOutcome:
    """Run a single relay session to completion."""
    session = RelaySession(endpoint, source, sink, buffer_size=buffer_size)
    return await session.run()
