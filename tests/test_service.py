"""
Tests for the discovery service lifecycle.
"""

import asyncio
import sys

import pytest

from libdetect import CallbackListener, DetectSettings, start
from libdetect.config import set_settings
from libdetect.discovery import Direction, DiscoveryService, service as service_module
from libdetect.errors import InterfaceEnumerationError, ListenerError


def _loopback_settings(**kwargs):
    kwargs.setdefault("bind_host", "127.0.0.1")
    kwargs.setdefault("connect_timeout", 0.5)
    kwargs.setdefault("stop_grace_period", 2.0)
    return DetectSettings(**kwargs)


def _dial_only(mapping):
    """Replace subnet expansion with a fixed local-address -> candidates map."""
    def fake_expand_all(local_addresses, skip_self=True):
        for address in local_addresses:
            yield from mapping.get(address, [])
    return fake_expand_all


class TestInboundPath:
    """Peers that connect to us."""

    @pytest.mark.asyncio
    async def test_inbound_peer_reachable_then_unreachable(self, recorder, waiter):
        service = DiscoveryService(
            0, recorder, settings=_loopback_settings(), address_provider=lambda: []
        )
        await service.start()

        reader, writer = await asyncio.open_connection("127.0.0.1", service.port)
        assert await waiter(lambda: len(recorder.reachable) == 1)
        event = recorder.reachable[0]
        assert event.address == "127.0.0.1"
        assert event.connection.direction == Direction.INBOUND

        greeting = await asyncio.wait_for(reader.readexactly(5), timeout=2.0)
        assert greeting == b"HELLO"

        writer.close()
        assert await waiter(lambda: len(recorder.unreachable) == 1)
        assert recorder.kinds_for(event.connection_id) == ["reachable", "unreachable"]
        assert service.peers == []

        await service.stop()


class TestOutboundPath:
    """Peers that we dial."""

    @pytest.mark.asyncio
    async def test_self_detection_without_skip_self(self, recorder, waiter, monkeypatch):
        """Dialing our own listener yields one event per end of the connection."""
        monkeypatch.setattr(
            service_module, "expand_all", _dial_only({"10.0.0.5": ["127.0.0.1"]})
        )
        service = DiscoveryService(
            0,
            recorder,
            skip_self=False,
            settings=_loopback_settings(),
            address_provider=lambda: ["10.0.0.5"],
        )
        await service.start()

        assert await waiter(lambda: len(recorder.reachable) == 2)
        directions = {e.connection.direction for e in recorder.reachable}
        assert directions == {Direction.INBOUND, Direction.OUTBOUND}
        assert len(service.peers) == 2

        await service.stop()

        assert len(recorder.unreachable) == 2
        for event in recorder.reachable:
            assert recorder.kinds_for(event.connection_id) == ["reachable", "unreachable"]

    @pytest.mark.asyncio
    async def test_dead_candidates_emit_nothing(self, recorder, monkeypatch):
        """Probing an address where nothing listens produces no event."""
        # Our listener is bound to 127.0.0.1 only, so nothing answers on 127.0.0.2
        monkeypatch.setattr(
            service_module, "expand_all", _dial_only({"10.0.0.5": ["127.0.0.2"]})
        )
        service = DiscoveryService(
            0, recorder, settings=_loopback_settings(), address_provider=lambda: ["10.0.0.5"]
        )

        await service.start()
        await asyncio.sleep(0.3)
        await service.stop()

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_candidate_count_from_real_expansion(self, recorder):
        service = DiscoveryService(
            0,
            recorder,
            settings=_loopback_settings(connect_timeout=0.1),
            address_provider=lambda: ["10.0.0.5"],
        )
        await service.start()
        assert service.candidate_count == 253
        assert service.local_addresses == ["10.0.0.5"]
        await service.stop()

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs 127.0.0.0/8 on lo")
    @pytest.mark.asyncio
    async def test_two_instances_find_each_other(self, waiter, monkeypatch, unused_port):
        """Two services on one port: both see the peer, and stopping one is noticed."""
        first_events, second_events = [], []
        first = DiscoveryService(
            unused_port,
            CallbackListener(first_events.append, first_events.append),
            settings=_loopback_settings(bind_host="127.0.0.1"),
            address_provider=lambda: [],
        )
        second = DiscoveryService(
            unused_port,
            CallbackListener(second_events.append, second_events.append),
            settings=_loopback_settings(bind_host="127.0.0.2"),
            address_provider=lambda: ["127.0.0.2"],
        )
        monkeypatch.setattr(
            service_module, "expand_all", _dial_only({"127.0.0.2": ["127.0.0.1"]})
        )

        await first.start()
        await second.start()

        assert await waiter(lambda: len(first_events) == 1 and len(second_events) == 1)
        assert second_events[0].address == "127.0.0.1"

        await second.stop()

        assert await waiter(lambda: len(first_events) == 2)
        lost = first_events[1]
        assert lost.address == first_events[0].address
        assert lost.connection_id == first_events[0].connection_id

        await first.stop()


class TestLifecycle:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_stop_twice(self, recorder, waiter):
        """A second stop() neither raises nor repeats teardown events."""
        service = DiscoveryService(
            0, recorder, settings=_loopback_settings(), address_provider=lambda: []
        )
        await service.start()
        _, writer = await asyncio.open_connection("127.0.0.1", service.port)
        assert await waiter(lambda: len(recorder.reachable) == 1)

        await service.stop()
        events_after_first_stop = list(recorder.events)
        await service.stop()

        assert recorder.events == events_after_first_stop
        assert len(recorder.unreachable) == 1
        assert not service.running
        writer.close()

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_raised(self, recorder):
        def broken():
            raise InterfaceEnumerationError("no interfaces")

        service = DiscoveryService(
            0, recorder, settings=_loopback_settings(), address_provider=broken
        )
        with pytest.raises(InterfaceEnumerationError):
            await service.start()

        assert not service.running
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_port_in_use(self, recorder):
        first = DiscoveryService(
            0, recorder, settings=_loopback_settings(), address_provider=lambda: []
        )
        await first.start()

        second = DiscoveryService(
            first.port, recorder, settings=_loopback_settings(), address_provider=lambda: []
        )
        with pytest.raises(ListenerError):
            await second.start()

        await first.stop()

    @pytest.mark.asyncio
    async def test_settings_not_mutated(self, recorder):
        """The caller's settings object is copied, not modified."""
        settings = _loopback_settings(port=1234, skip_self=True)
        service = DiscoveryService(0, recorder, skip_self=False, settings=settings)

        assert settings.port == 1234
        assert settings.skip_self is True
        assert service.settings.port == 0
        assert service.settings.skip_self is False

    @pytest.mark.asyncio
    async def test_defaults_from_global_settings(self, recorder):
        """Without explicit settings the global ones are used."""
        set_settings(DetectSettings(connect_timeout=0.1, max_concurrent_dials=3, bind_host="127.0.0.1"))

        service = DiscoveryService(0, recorder, skip_self=False)

        assert service.settings.connect_timeout == 0.1
        assert service.settings.bind_host == "127.0.0.1"
        assert service.settings.skip_self is False
        assert service._prober.connect_timeout == 0.1
        assert service._prober.max_concurrent == 3

    @pytest.mark.asyncio
    async def test_module_start(self, recorder, monkeypatch):
        """The module-level start() returns a running, stoppable handle."""
        monkeypatch.setattr(service_module, "get_local_ipv4_addresses", lambda: [])

        handle = await start(0, recorder, settings=_loopback_settings())
        assert handle.running
        await handle.stop()
        assert not handle.running
