"""Shared fixtures for relay tests."""

import pytest

from helpers import FakeTransport
from pair_relay.config import RelayConfig
from pair_relay.connection import PeerConnection
from pair_relay.server import RelayServer


@pytest.fixture
def make_relay():
    def _make(**kwargs):
        kwargs.setdefault("pairings", {"device": "console"})
        return RelayServer(RelayConfig(**kwargs))

    return _make


@pytest.fixture
def relay(make_relay):
    """Relay pairing 'device' with 'console', default addressing."""
    return make_relay()


@pytest.fixture
def connect():
    def _connect(fail_with=None, transport=None):
        return PeerConnection(transport or FakeTransport(fail_with=fail_with))

    return _connect
