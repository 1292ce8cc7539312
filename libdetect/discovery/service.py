"""
Discovery service lifecycle.

Wires the listener, the prober and the liveness tracker together for one
start()/stop() session. Both connection streams feed a single queue so
that one consumer hands every connection to the tracker.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, List, Optional

from ..config import DetectSettings, get_settings
from ..network.interfaces import get_local_ipv4_addresses
from ..network.subnet import expand_all
from .events import DiscoveryListener, PeerConnection
from .listener import InboundListener
from .liveness import PeerLivenessTracker
from .prober import Prober

logger = logging.getLogger(__name__)

AddressProvider = Callable[[], List[str]]


class DiscoveryService:
    """
    Finds peers running on the same port in our /24 subnets.

    Usage:
        service = DiscoveryService(port=11460, listener=my_listener)
        await service.start()
        # ... later ...
        await service.stop()

    ``my_listener`` needs ``on_peer_reachable(event)`` and
    ``on_peer_unreachable(event)``; see CallbackListener.
    Settings not passed in are taken from get_settings().
    """

    def __init__(
        self,
        port: int,
        listener: DiscoveryListener,
        skip_self: bool = True,
        settings: Optional[DetectSettings] = None,
        address_provider: Optional[AddressProvider] = None,
    ):
        self.settings = replace(settings or get_settings(), port=port, skip_self=skip_self)
        self.settings.validate()

        self.listener = listener
        self._address_provider = address_provider

        self._inbound = InboundListener(port, host=self.settings.bind_host)
        self._prober = Prober(
            connect_timeout=self.settings.connect_timeout,
            max_concurrent=self.settings.max_concurrent_dials,
        )
        self._tracker = PeerLivenessTracker(
            listener,
            greeting=self.settings.greeting,
            read_chunk_size=self.settings.read_chunk_size,
            heartbeat_interval=self.settings.heartbeat_interval,
        )
        self._queue: "asyncio.Queue[Optional[PeerConnection]]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._running = False
        self._stopped = False

        self.local_addresses: List[str] = []
        self.candidate_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        return self._inbound.port

    @property
    def peers(self) -> List[PeerConnection]:
        """Currently live peer connections."""
        return self._tracker.peers

    async def start(self) -> "DiscoveryService":
        """
        Start listening and run one discovery round.

        Raises:
            ListenerError: if the port cannot be bound
            InterfaceEnumerationError: if local interfaces cannot be listed
        """
        if self._running or self._stopped:
            return self

        await self._inbound.start(self._queue.put)
        self._consumer = asyncio.create_task(self._tracker.run(self._queue))
        self._running = True

        try:
            provider = self._address_provider or get_local_ipv4_addresses
            self.local_addresses = provider()
        except Exception:
            await self.stop()
            raise

        candidates = list(expand_all(self.local_addresses, self.settings.skip_self))
        self.candidate_count = len(candidates)
        # Dial the port actually bound so port 0 works for local testing
        self._prober.start(candidates, self.port, self._queue.put)

        logger.info(
            f"Discovery started on port {self.port}: "
            f"{len(self.local_addresses)} local IPv4 addresses, {len(candidates)} candidates"
        )
        return self

    async def stop(self) -> None:
        """
        Stop discovery and release every socket.

        In-flight dials are cancelled, the listener is closed, and live
        connections are torn down (each reports PeerUnreachable).
        Calling this twice is harmless.
        """
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        grace = self.settings.stop_grace_period

        self._inbound.close()
        self._prober.cancel()
        try:
            await asyncio.wait_for(self._prober.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"Probes still unwinding after {grace}s")

        await self._tracker.close(timeout=grace)

        # Anything still queued is closed by the tracker without events
        self._queue.put_nowait(None)
        if self._consumer:
            await self._consumer

        await self._inbound.wait_closed(timeout=grace)
        logger.info("Discovery stopped")


async def start(
    port: int,
    listener: DiscoveryListener,
    skip_self: bool = True,
    settings: Optional[DetectSettings] = None,
) -> DiscoveryService:
    """
    Start discovery and return the running service as a stop handle.

    Usage:
        handle = await start(11460, CallbackListener(on_reachable=print))
        ...
        await handle.stop()
    """
    service = DiscoveryService(port, listener, skip_self=skip_self, settings=settings)
    return await service.start()
