"""
Per-connection liveness tracking.

Each connection runs ESTABLISHED -> MONITORING -> LOST:

- ESTABLISHED: PeerReachable is emitted and the greeting is sent.
- MONITORING: the connection is read continuously and the bytes thrown
  away. TCP only reports a dead peer on the next read or write, so the
  read is what turns a silent failure into an event.
- LOST: PeerUnreachable is emitted and the connection is closed. Terminal.

Events for one connection are emitted in that order, each at most once.
Nothing is promised about ordering across connections.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..config import DEFAULT_GREETING
from .events import (
    DiscoveryListener,
    PeerConnection,
    PeerReachable,
    PeerState,
    PeerUnreachable,
)

logger = logging.getLogger(__name__)

HEARTBEAT = b"\x00"


class PeerLivenessTracker:
    """
    Turns raw connections into PeerReachable / PeerUnreachable events.

    Listener callbacks run on the event loop. An exception from a callback
    is logged and does not affect this or any other connection.
    """

    def __init__(
        self,
        listener: DiscoveryListener,
        greeting: bytes = DEFAULT_GREETING,
        read_chunk_size: int = 4096,
        heartbeat_interval: Optional[float] = None,
    ):
        self.listener = listener
        self.greeting = greeting
        self.read_chunk_size = read_chunk_size
        self.heartbeat_interval = heartbeat_interval

        self._states: Dict[int, PeerState] = {}
        self._connections: Dict[int, PeerConnection] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._lost_reasons: Dict[int, str] = {}
        self._closing = False

        # Metrics
        self.reachable_count = 0
        self.unreachable_count = 0
        self.bytes_discarded = 0

    @property
    def peers(self) -> List[PeerConnection]:
        """Connections that are currently live."""
        return list(self._connections.values())

    def state_of(self, connection: PeerConnection) -> Optional[PeerState]:
        """Current state, or None if untracked or already lost."""
        return self._states.get(connection.connection_id)

    def track(self, connection: PeerConnection) -> Optional[asyncio.Task]:
        """
        Take ownership of a new connection and start monitoring it.

        Tracking the same connection twice is ignored. After ``close()``
        new connections are closed without emitting anything.
        """
        if self._closing or connection.closed:
            connection.close()
            return None
        conn_id = connection.connection_id
        if conn_id in self._states:
            return self._tasks.get(conn_id)

        self._states[conn_id] = PeerState.ESTABLISHED
        self._connections[conn_id] = connection
        self.reachable_count += 1
        logger.info(f"Peer reachable: {connection.address} ({connection.direction.value})")
        self._dispatch("on_peer_reachable", PeerReachable(connection.address, connection))

        task = asyncio.create_task(self._monitor(connection))
        self._tasks[conn_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(conn_id, None))
        return task

    async def run(self, queue: "asyncio.Queue[Optional[PeerConnection]]") -> None:
        """Track connections from ``queue`` until a None arrives."""
        while True:
            connection = await queue.get()
            if connection is None:
                return
            self.track(connection)

    async def _monitor(self, connection: PeerConnection) -> None:
        conn_id = connection.connection_id
        reason = "closed"
        heartbeat: Optional[asyncio.Task] = None
        try:
            try:
                await connection.send(self.greeting)
            except OSError as e:
                reason = f"greeting failed: {e}"
                return

            if self._states.get(conn_id) != PeerState.ESTABLISHED:
                return
            self._states[conn_id] = PeerState.MONITORING

            if self.heartbeat_interval:
                heartbeat = asyncio.create_task(self._heartbeat(connection))

            reason = await self._read_until_closed(connection)
        except asyncio.CancelledError:
            reason = "stopped"
            raise
        finally:
            if heartbeat:
                heartbeat.cancel()
            reason = self._lost_reasons.pop(conn_id, reason)
            self.mark_lost(connection, reason)

    async def _read_until_closed(self, connection: PeerConnection) -> str:
        while True:
            try:
                data = await connection.reader.read(self.read_chunk_size)
            except OSError as e:
                return f"read failed: {e}"
            if not data:
                return "end of stream"
            self.bytes_discarded += len(data)

    async def _heartbeat(self, connection: PeerConnection) -> None:
        """Write a null byte periodically so a dead peer also fails on write."""
        while not connection.closed:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await connection.send(HEARTBEAT)
            except OSError as e:
                self._lost_reasons[connection.connection_id] = f"heartbeat failed: {e}"
                # Closing the transport ends the read loop with end-of-stream
                connection.close()
                return

    def mark_lost(self, connection: PeerConnection, reason: str = "closed") -> None:
        """Move a connection to LOST. A second call is a no-op."""
        conn_id = connection.connection_id
        state = self._states.get(conn_id)
        if state is None or state == PeerState.LOST:
            return

        self._states[conn_id] = PeerState.LOST
        self._connections.pop(conn_id, None)
        self.unreachable_count += 1
        logger.info(f"Peer unreachable: {connection.address} ({reason})")
        self._dispatch(
            "on_peer_unreachable",
            PeerUnreachable(connection.address, conn_id, reason),
        )
        del self._states[conn_id]
        connection.close()

    def _dispatch(self, handler_name: str, event) -> None:
        handler = getattr(self.listener, handler_name, None)
        if handler is None:
            return
        try:
            handler(event)
        except Exception:
            logger.exception(f"Listener {handler_name} failed for {event.address}")

    async def close(self, timeout: Optional[float] = None) -> None:
        """
        Tear down every tracked connection.

        Each live connection reports PeerUnreachable on the way out, then
        its socket is waited on for up to ``timeout`` seconds.
        Calling this twice is harmless.
        """
        if self._closing:
            return
        self._closing = True
        connections = list(self._connections.values())

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # Monitors cancelled before their first step never ran their cleanup
        for connection in list(self._connections.values()):
            self.mark_lost(connection, "stopped")

        if connections:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(c.aclose() for c in connections)),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"{len(connections)} connections still closing after {timeout}s")

        logger.debug(
            f"Liveness tracker closed: {self.reachable_count} reachable, "
            f"{self.unreachable_count} unreachable"
        )
