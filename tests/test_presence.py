"""Tests for presence computation."""

import pytest

from pair_relay.pairing import PairingResolver, PairingTable
from pair_relay.presence import PresenceNotifier
from pair_relay.registry import PeerRegistry

ONLINE = {"type": "remote-peer-online"}
OFFLINE = {"type": "remote-peer-offline"}


@pytest.fixture
def registry():
    return PeerRegistry()


@pytest.fixture
def notifier(registry):
    resolver = PairingResolver(PairingTable({"device": "console"}))
    return PresenceNotifier(registry, resolver)


class TestOnRegister:
    def test_counterpart_absent(self, registry, notifier, connect):
        device = connect()
        registry.register("device", device)
        deliveries = notifier.on_register("device")
        assert [(d.connection, d.frame) for d in deliveries] == [(device, OFFLINE)]

    def test_counterpart_present(self, registry, notifier, connect):
        device, console = connect(), connect()
        registry.register("device", device)
        registry.register("console", console)
        deliveries = notifier.on_register("console")
        assert [(d.connection, d.frame) for d in deliveries] == [
            (console, ONLINE),
            (device, ONLINE),
        ]

    def test_unpaired_identity_told_offline(self, registry, notifier, connect):
        stranger = connect()
        registry.register("stranger", stranger)
        deliveries = notifier.on_register("stranger")
        assert [(d.connection, d.frame) for d in deliveries] == [(stranger, OFFLINE)]

    def test_unregistered_identity_gets_nothing(self, notifier):
        assert notifier.on_register("device") == []

    def test_computed_fresh_each_time(self, registry, notifier, connect):
        device, console = connect(), connect()
        registry.register("device", device)
        registry.register("console", console)
        assert len(notifier.on_register("device")) == 2
        registry.unregister_by_connection(console)
        assert [d.frame for d in notifier.on_register("device")] == [OFFLINE]


class TestOnDisconnect:
    def test_counterpart_present(self, registry, notifier, connect):
        console = connect()
        registry.register("console", console)
        deliveries = notifier.on_disconnect("device")
        assert [(d.connection, d.frame) for d in deliveries] == [(console, OFFLINE)]

    def test_counterpart_absent(self, notifier):
        assert notifier.on_disconnect("device") == []

    def test_unpaired_identity(self, registry, notifier, connect):
        registry.register("console", connect())
        assert notifier.on_disconnect("stranger") == []
