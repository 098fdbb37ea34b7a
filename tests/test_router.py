"""Tests for inbound message routing."""

import json

import pytest

from pair_relay.connection import ConnectionState
from helpers import frames, hello

ONLINE = {"type": "remote-peer-online"}
OFFLINE = {"type": "remote-peer-offline"}


async def register(relay, connection, identity, msg_type="hello"):
    await relay.router.on_message(connection, hello(identity, msg_type))


async def send(relay, connection, message):
    await relay.router.on_message(connection, json.dumps(message))


class TestRegistration:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("msg_type", ["hello", "registration"])
    async def test_binds_identity(self, relay, connect, msg_type):
        device = connect()
        await register(relay, device, "device", msg_type)
        assert relay.registry.lookup("device") is device
        assert device.identity == "device"
        assert device.state is ConnectionState.REGISTERED

    @pytest.mark.asyncio
    async def test_alone_receives_offline(self, relay, connect):
        device = connect()
        await register(relay, device, "device")
        assert frames(device) == [OFFLINE]

    @pytest.mark.asyncio
    async def test_pair_both_receive_online(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")
        assert frames(device) == [OFFLINE, ONLINE]
        assert frames(console) == [ONLINE]

    @pytest.mark.asyncio
    async def test_missing_identity_refused(self, relay, connect):
        conn = connect()
        await send(relay, conn, {"type": "registration"})
        assert conn.state is ConnectionState.UNREGISTERED
        assert len(relay.registry) == 0
        assert frames(conn) == []

    @pytest.mark.asyncio
    async def test_reregistration_replaces_mapping(self, relay, connect):
        first, second = connect(), connect()
        await register(relay, first, "device")
        await register(relay, second, "device")
        assert relay.registry.lookup("device") is second
        assert first.transport.closed_with is None

    @pytest.mark.asyncio
    async def test_close_policy_closes_superseded(self, make_relay, connect):
        relay = make_relay(replace_policy="close")
        first, second = connect(), connect()
        await register(relay, first, "device")
        await register(relay, second, "device")
        assert first.transport.closed_with == (4000, "superseded")
        assert first.state is ConnectionState.CLOSED
        assert relay.registry.lookup("device") is second

    @pytest.mark.asyncio
    async def test_rebind_releases_old_identity(self, make_relay, connect):
        relay = make_relay(pairings={"device": "console", "robot": "pilot"})
        conn, console = connect(), connect()
        await register(relay, conn, "device")
        await register(relay, console, "console")
        await register(relay, conn, "robot")

        assert relay.registry.lookup("device") is None
        assert relay.registry.lookup("robot") is conn
        assert frames(console) == [ONLINE, OFFLINE]
        assert frames(conn)[-1] == OFFLINE


class TestImplicitForwarding:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["offer", "answer", "candidate", "offer_request"])
    async def test_forwarded_verbatim(self, relay, connect, kind):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")

        message = {"type": kind, "payload": {"sdp": "v=0"}}
        await send(relay, console, message)
        assert frames(device)[-1] == message
        assert frames(console) == [ONLINE]

    @pytest.mark.asyncio
    async def test_counterpart_absent(self, relay, connect):
        console = connect()
        await register(relay, console, "console")
        await send(relay, console, {"type": "offer", "sdp": "X"})
        assert frames(console) == [OFFLINE]

    @pytest.mark.asyncio
    async def test_unpaired_sender_dropped(self, relay, connect):
        stranger, device = connect(), connect()
        await register(relay, device, "device")
        await register(relay, stranger, "stranger")
        await send(relay, stranger, {"type": "offer", "sdp": "X"})
        assert frames(device) == [OFFLINE]


class TestExplicitForwarding:
    @pytest.mark.asyncio
    async def test_rewrapped_with_sender(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")

        data = {"type": "offer", "sdp": "X"}
        await send(relay, console, {"type": "signal", "id": "console", "to": "device", "data": data})
        assert frames(device)[-1] == {"type": "signal", "from": "console", "data": data}

    @pytest.mark.asyncio
    async def test_exactly_one_delivery(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")
        before = len(frames(device))

        await send(relay, console, {"type": "signal", "to": "device", "data": {"x": 1}})
        assert len(frames(device)) == before + 1

    @pytest.mark.asyncio
    async def test_absent_target_no_error(self, relay, connect):
        console = connect()
        await register(relay, console, "console")
        await send(relay, console, {"type": "signal", "to": "ghost", "data": {"x": 1}})
        assert frames(console) == [OFFLINE]

    @pytest.mark.asyncio
    async def test_sender_tag_is_registered_identity(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")
        await send(relay, console, {"type": "signal", "id": "imposter", "to": "device", "data": {}})
        assert frames(device)[-1]["from"] == "console"

    @pytest.mark.asyncio
    async def test_envelope_without_to_uses_pairing(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")
        await send(relay, device, {"type": "signal", "data": {"type": "answer"}})
        assert frames(console)[-1] == {
            "type": "signal",
            "from": "device",
            "data": {"type": "answer"},
        }

    @pytest.mark.asyncio
    async def test_static_addressing_ignores_to(self, make_relay, connect):
        relay = make_relay(addressing="static", pairings={"device": "console"})
        device, console, other = connect(), connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")
        await register(relay, other, "other")

        await send(relay, console, {"type": "signal", "to": "other", "data": {"n": 1}})
        assert frames(other) == [OFFLINE]
        assert frames(device)[-1]["data"] == {"n": 1}

    @pytest.mark.asyncio
    async def test_explicit_addressing_requires_to(self, make_relay, connect):
        relay = make_relay(addressing="explicit")
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")

        await send(relay, console, {"type": "offer", "sdp": "X"})
        assert frames(device) == [OFFLINE, ONLINE]


class TestDroppedMessages:
    @pytest.mark.asyncio
    async def test_signal_before_registration(self, relay, connect):
        device, anonymous = connect(), connect()
        await register(relay, device, "device")
        await send(relay, anonymous, {"type": "signal", "to": "device", "data": {}})
        await send(relay, anonymous, {"type": "offer", "sdp": "X"})
        assert frames(device) == [OFFLINE]
        assert frames(anonymous) == []

    @pytest.mark.asyncio
    async def test_malformed_json(self, relay, connect):
        conn = connect()
        await relay.router.on_message(conn, "{not json")
        assert frames(conn) == []
        assert conn.state is ConnectionState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_unknown_type(self, relay, connect):
        conn = connect()
        await register(relay, conn, "device")
        await send(relay, conn, {"type": "query"})
        await send(relay, conn, {"type": "remote-peer-online"})
        assert frames(conn) == [OFFLINE]

    @pytest.mark.asyncio
    async def test_superseded_connection_cannot_signal(self, relay, connect):
        old, new, console = connect(), connect(), connect()
        await register(relay, old, "device")
        await register(relay, console, "console")
        await register(relay, new, "device")
        before = len(frames(console))

        await send(relay, old, {"type": "answer", "sdp": "stale"})
        assert len(frames(console)) == before

    @pytest.mark.asyncio
    async def test_closed_connection_ignored(self, relay, connect):
        conn = connect()
        conn.mark_closed()
        await register(relay, conn, "device")
        assert relay.registry.lookup("device") is None


class TestTransportFailure:
    @pytest.mark.asyncio
    async def test_failed_forward_cleans_up_target(self, relay, connect):
        device = connect(fail_with=ConnectionResetError("reset"))
        console = connect()
        await register(relay, device, "device")
        assert device.state is ConnectionState.CLOSED
        assert relay.registry.lookup("device") is None

        await register(relay, console, "console")
        assert frames(console) == [OFFLINE]

    @pytest.mark.asyncio
    async def test_failure_during_forward_notifies_sender(self, relay, connect):
        device, console = connect(), connect()
        await register(relay, device, "device")
        await register(relay, console, "console")

        device.transport.fail_with = ConnectionResetError("reset")
        await send(relay, console, {"type": "offer", "sdp": "X"})

        assert relay.registry.lookup("device") is None
        assert frames(console) == [ONLINE, OFFLINE]
