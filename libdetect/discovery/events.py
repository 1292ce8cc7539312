"""
Connection handles and discovery events.

A PeerConnection wraps one live TCP stream. The liveness tracker owns it
from creation until teardown and reports its life as exactly one
PeerReachable, then at most one PeerUnreachable.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class Direction(Enum):
    """Who opened the connection."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class PeerState(Enum):
    """Liveness state of a single connection."""
    ESTABLISHED = "established"
    MONITORING = "monitoring"
    LOST = "lost"


class PeerConnection:
    """
    A live bidirectional byte stream to a remote endpoint.

    Wraps the asyncio reader/writer pair returned by ``open_connection``
    or handed to a ``start_server`` callback.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        direction: Direction,
        address: Optional[str] = None,
        port: Optional[int] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.direction = direction
        self.connection_id = next(_connection_ids)
        self.created_at = time.time()

        peername = writer.get_extra_info("peername")
        if peername:
            address = address or peername[0]
            port = port if port is not None else peername[1]
        self.address = address or "unknown"
        self.port = port or 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def socket(self):
        """The underlying transport socket, if any."""
        return self.writer.get_extra_info("socket")

    @property
    def endpoint(self) -> str:
        return f"{self.address}:{self.port}"

    async def send(self, data: bytes) -> None:
        """Write ``data`` and wait for the buffer to drain."""
        self.writer.write(data)
        await self.writer.drain()

    def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()

    async def aclose(self) -> None:
        """Close the transport and wait until it is gone."""
        self.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            # Already broken; nothing more to release
            logger.debug(f"Error closing {self.endpoint}: {e}")

    def __repr__(self) -> str:
        return (
            f"PeerConnection(id={self.connection_id}, {self.direction.value}, "
            f"{self.endpoint}{', closed' if self._closed else ''})"
        )


@dataclass(frozen=True)
class PeerReachable:
    """A peer was found and a live connection to it is open."""
    address: str
    connection: PeerConnection = field(compare=False)
    timestamp: float = field(default_factory=time.time, compare=False)

    @property
    def connection_id(self) -> int:
        return self.connection.connection_id


@dataclass(frozen=True)
class PeerUnreachable:
    """A previously reachable peer's connection broke."""
    address: str
    connection_id: int = 0
    reason: str = ""
    timestamp: float = field(default_factory=time.time, compare=False)


class DiscoveryListener(Protocol):
    """Receives discovery events."""

    def on_peer_reachable(self, event: PeerReachable) -> None:
        ...

    def on_peer_unreachable(self, event: PeerUnreachable) -> None:
        ...


class CallbackListener:
    """
    Adapts two plain callables to the DiscoveryListener interface.

    Usage:
        listener = CallbackListener(
            on_reachable=lambda e: print(f"Found: {e.address}"),
            on_unreachable=lambda e: print(f"Lost: {e.address}"),
        )
    """

    def __init__(
        self,
        on_reachable: Optional[Callable[[PeerReachable], None]] = None,
        on_unreachable: Optional[Callable[[PeerUnreachable], None]] = None,
    ):
        self._on_reachable = on_reachable
        self._on_unreachable = on_unreachable

    def on_peer_reachable(self, event: PeerReachable) -> None:
        if self._on_reachable:
            self._on_reachable(event)

    def on_peer_unreachable(self, event: PeerUnreachable) -> None:
        if self._on_unreachable:
            self._on_unreachable(event)


@dataclass(frozen=True)
class DialResult:
    """Outcome of one outbound connection attempt."""
    host: str
    port: int
    connection: Optional[PeerConnection] = None
    reason: str = ""

    @property
    def connected(self) -> bool:
        return self.connection is not None

    @classmethod
    def success(cls, host: str, port: int, connection: PeerConnection) -> "DialResult":
        return cls(host=host, port=port, connection=connection)

    @classmethod
    def failure(cls, host: str, port: int, reason: str) -> "DialResult":
        return cls(host=host, port=port, reason=reason)
