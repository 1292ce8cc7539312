"""
Inbound TCP listener on the discovery port.

Every accepted connection is a peer candidate. Nothing is filtered:
connections from ourselves or from unrelated processes are accepted too.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..errors import ListenerError
from .events import Direction, PeerConnection

logger = logging.getLogger(__name__)

ConnectionSink = Callable[[PeerConnection], Awaitable[None]]


class InboundListener:
    """
    Accepts peer connections on the discovery port.

    Usage:
        listener = InboundListener(port=11460)
        await listener.start()

        async for connection in listener.connections():
            print(f"Inbound from {connection.address}")

    Pass a ``sink`` to ``start`` to receive connections by callback
    instead of iterating.
    """

    def __init__(self, port: int, host: str = "0.0.0.0"):
        self.host = host
        self.requested_port = port
        self._server: Optional[asyncio.AbstractServer] = None
        self._sink: Optional[ConnectionSink] = None
        self._queue: "asyncio.Queue[Optional[PeerConnection]]" = asyncio.Queue()
        self._stopped = False

        # Metrics
        self.accepted = 0

    @property
    def running(self) -> bool:
        return self._server is not None and not self._stopped

    @property
    def port(self) -> int:
        """The port actually bound (differs from the requested one for port 0)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self.requested_port

    async def start(self, sink: Optional[ConnectionSink] = None) -> None:
        """
        Bind and start accepting.

        Raises:
            ListenerError: if the port cannot be bound
        """
        if self._server is not None:
            return

        self._sink = sink or self._queue.put
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.requested_port,
                reuse_address=True,
            )
        except OSError as e:
            raise ListenerError(f"Cannot listen on {self.host}:{self.requested_port}: {e}") from e

        logger.info(f"Listening for peers on {self.host}:{self.port}")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        connection = PeerConnection(reader, writer, Direction.INBOUND)
        if self._stopped:
            connection.close()
            return

        self.accepted += 1
        logger.debug(f"Accepted connection from {connection.endpoint}")
        try:
            await self._sink(connection)
        except asyncio.CancelledError:
            connection.close()
            raise

    async def connections(self) -> AsyncIterator[PeerConnection]:
        """Iterate accepted connections until the listener is stopped."""
        while True:
            connection = await self._queue.get()
            if connection is None:
                return
            yield connection

    def close(self) -> None:
        """Close the listening socket. Established connections are untouched."""
        if self._stopped:
            return
        self._stopped = True
        if self._server:
            self._server.close()
        self._queue.put_nowait(None)
        logger.info(f"Stopped listening on port {self.port}")

    async def wait_closed(self, timeout: Optional[float] = None) -> None:
        """Wait for the server to finish closing."""
        if self._server is None:
            return
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Listener on port {self.port} did not close within {timeout}s")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Close the listener and wait for it to go away."""
        self.close()
        await self.wait_closed(timeout)
