"""
Shared fixtures for libdetect tests.

All network tests run over loopback on ephemeral ports.
"""

import asyncio
import socket
import time

import pytest
import pytest_asyncio

from libdetect.config import reset_settings
from libdetect.discovery import Direction, PeerConnection


class RecordingListener:
    """Collects discovery events in arrival order."""

    def __init__(self):
        self.events = []

    def on_peer_reachable(self, event):
        self.events.append(("reachable", event))

    def on_peer_unreachable(self, event):
        self.events.append(("unreachable", event))

    @property
    def reachable(self):
        return [e for kind, e in self.events if kind == "reachable"]

    @property
    def unreachable(self):
        return [e for kind, e in self.events if kind == "unreachable"]

    def kinds_for(self, connection_id):
        return [kind for kind, e in self.events if e.connection_id == connection_id]


class RemoteServer:
    """Plain TCP server standing in for the far end of a connection."""

    def __init__(self, host="127.0.0.1"):
        self.host = host
        self.port = 0
        self.peers = []  # (reader, writer) pairs
        self._server = None

    async def start(self):
        self._server = await asyncio.start_server(self._accept, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def _accept(self, reader, writer):
        self.peers.append((reader, writer))

    def drop_all(self):
        for _, writer in self.peers:
            writer.close()

    async def close(self):
        self.drop_all()
        self._server.close()
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=2.0)
        except asyncio.TimeoutError:
            pass


async def wait_until(predicate, timeout=3.0):
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def free_port(host="127.0.0.1"):
    """Find a TCP port that nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def waiter():
    return wait_until


@pytest.fixture
def unused_port():
    return free_port()


@pytest.fixture(autouse=True)
def clean_settings():
    yield
    reset_settings()


@pytest_asyncio.fixture
async def remote():
    server = RemoteServer()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def open_peer(remote):
    """Factory opening an outbound PeerConnection to ``remote``."""
    opened = []

    async def _open():
        reader, writer = await asyncio.open_connection(remote.host, remote.port)
        connection = PeerConnection(
            reader, writer, Direction.OUTBOUND, address=remote.host, port=remote.port
        )
        opened.append(connection)
        return connection

    yield _open
    for connection in opened:
        connection.close()
