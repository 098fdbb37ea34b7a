"""WebSocket signaling relay server.

Pairs a remote-controlled device with its operator console so the two can
negotiate a direct WebRTC connection. The relay forwards SDP offers/answers and
ICE candidates between the paired identities and tells each side when its
counterpart comes and goes.

Usage:
    pair-relay serve [--host HOST] [--port PORT]
"""

import asyncio
import signal
from typing import Optional

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from pair_relay.config import RelayConfig
from pair_relay.connection import PeerConnection
from pair_relay.lifecycle import LifecycleManager
from pair_relay.pairing import PairingResolver
from pair_relay.presence import PresenceNotifier
from pair_relay.registry import PeerRegistry
from pair_relay.router import MessageRouter


class RelayServer:
    """Owns the relay state and serves one handler task per connection.

    All components are created once here and injected into each other; there
    is no module-level relay state.

    Attributes:
        config: Effective relay configuration.
        registry: Peer registry shared by all connections.
        resolver: Destination resolver built from the configured pairings.
        presence: Presence notifier.
        lifecycle: Connection lifecycle manager.
        router: Message router.
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.registry = PeerRegistry()
        self.resolver = PairingResolver(
            self.config.pairing_table(), addressing=self.config.addressing
        )
        self.presence = PresenceNotifier(self.registry, self.resolver)
        self.lifecycle = LifecycleManager(self.registry, self.presence)
        self.router = MessageRouter(
            self.registry,
            self.resolver,
            self.presence,
            self.lifecycle,
            replace_policy=self.config.replace_policy,
        )
        self._server = None

    async def handler(self, websocket) -> None:
        """Handle a WebSocket connection from open to close."""
        connection = PeerConnection(websocket)
        self.lifecycle.on_open(connection)

        try:
            async for message in websocket:
                await self.router.on_message(connection, message)
        except ConnectionClosed as e:
            logger.debug(f"Connection {connection.label} closed: {e}")
        except OSError as e:
            await self.lifecycle.on_transport_error(connection, e)
        finally:
            await self.lifecycle.on_close(connection)

    async def start(self):
        """Start listening. Returns the underlying ``websockets`` server."""
        self._server = await websockets.serve(
            self.handler,
            self.config.host,
            self.config.port,
            max_size=self.config.max_message_size,
            ping_interval=self.config.ping_interval,
        )
        logger.info(
            f"Signaling relay listening on ws://{self.config.host}:{self.port} "
            f"(addressing: {self.config.addressing}, "
            f"pairings: {dict(self.resolver.table.pairs())})"
        )
        return self._server

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self.config.port

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Signaling relay stopped")

    async def serve(self, stop: Optional[asyncio.Future] = None) -> None:
        """Run until ``stop`` resolves (forever if not given)."""
        await self.start()
        try:
            await (stop if stop is not None else asyncio.Future())
        finally:
            await self.stop()

    async def run(self) -> None:
        """Serve until SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        stop = loop.create_future()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _request_stop, stop)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass
        await self.serve(stop)


def _request_stop(stop: asyncio.Future) -> None:
    if not stop.done():
        logger.info("Shutdown requested")
        stop.set_result(None)


async def main(config: RelayConfig) -> None:
    """Start the relay and run until SIGINT or SIGTERM."""
    await RelayServer(config).run()
