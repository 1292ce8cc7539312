"""
Outbound connection probing.

Dials every candidate address on the discovery port, concurrently and
once each. Successful dials become PeerConnections; failures are
expected (most of a /24 is empty) and are dropped.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Set

from ..config import DEFAULT_MAX_CONCURRENT_DIALS
from .events import DialResult, Direction, PeerConnection

logger = logging.getLogger(__name__)

ConnectionSink = Callable[[PeerConnection], Awaitable[None]]


class Prober:
    """
    Concurrent TCP prober with a bounded number of sockets in flight.

    Usage:
        prober = Prober(connect_timeout=1.0)
        async for connection in prober.probe(["10.0.0.1", "10.0.0.2"], 11460):
            print(f"Connected to {connection.address}")
    """

    def __init__(
        self,
        connect_timeout: float = 2.0,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_DIALS,
    ):
        self.connect_timeout = connect_timeout
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._runs: Set[asyncio.Task] = set()
        self._cancelled = False

        # Metrics
        self.attempts = 0
        self.successes = 0
        self.failures = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def dial(self, host: str, port: int) -> DialResult:
        """Attempt a single TCP connection to host:port."""
        async with self._semaphore:
            if self._cancelled:
                return DialResult.failure(host, port, "cancelled")

            self.attempts += 1
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(host, port),
                    timeout=self.connect_timeout,
                )
            except asyncio.TimeoutError:
                self.failures += 1
                return DialResult.failure(host, port, "timeout")
            except OSError as e:
                self.failures += 1
                return DialResult.failure(host, port, e.strerror or str(e))

        self.successes += 1
        connection = PeerConnection(reader, writer, Direction.OUTBOUND, address=host, port=port)
        return DialResult.success(host, port, connection)

    async def probe(self, candidates: Iterable[str], port: int) -> AsyncIterator[PeerConnection]:
        """
        Dial all candidates and yield connections as they succeed.

        Failed dials are discarded here. Closing the iterator early cancels
        the remaining dials and closes any connection not yet yielded.
        """
        hosts = list(candidates)
        if self._cancelled or not hosts:
            return

        logger.debug(f"Probing {len(hosts)} candidates on port {port}")
        tasks: List[asyncio.Task] = [
            asyncio.ensure_future(self.dial(host, port)) for host in hosts
        ]
        yielded: Set[int] = set()
        try:
            for next_result in asyncio.as_completed(tasks):
                result = await next_result
                if not result.connected:
                    logger.debug(f"No peer at {result.host}:{result.port}: {result.reason}")
                    continue
                yielded.add(result.connection.connection_id)
                yield result.connection
        finally:
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if (
                    isinstance(result, DialResult)
                    and result.connected
                    and result.connection.connection_id not in yielded
                ):
                    result.connection.close()

    def start(self, candidates: Iterable[str], port: int, sink: ConnectionSink) -> asyncio.Task:
        """Probe in the background, handing each connection to ``sink``."""
        task = asyncio.create_task(self._run(list(candidates), port, sink))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _run(self, candidates: List[str], port: int, sink: ConnectionSink) -> None:
        found = 0
        probe = self.probe(candidates, port)
        try:
            async for connection in probe:
                try:
                    await sink(connection)
                except asyncio.CancelledError:
                    connection.close()
                    raise
                found += 1
        finally:
            await probe.aclose()
        logger.info(f"Probe round finished: {found} of {len(candidates)} candidates answered")

    def cancel(self) -> None:
        """Stop dialing. Dials that have not connected yet are abandoned."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._runs):
            task.cancel()

    async def wait(self) -> None:
        """Wait for background probe rounds to finish or unwind."""
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)
