"""Connection lifecycle: binding cleanup and delivery of outbound frames."""

from typing import TYPE_CHECKING, Iterable

from loguru import logger
from websockets.exceptions import ConnectionClosed

from pair_relay.protocol import TransportError

if TYPE_CHECKING:
    from pair_relay.connection import PeerConnection
    from pair_relay.presence import Delivery, PresenceNotifier
    from pair_relay.registry import PeerRegistry


class LifecycleManager:
    """Drives registry cleanup and presence on disconnect.

    Cleanup for a connection runs exactly once, no matter how many close or
    transport-error events are reported for it.

    Attributes:
        registry: Shared peer registry.
        presence: Presence notifier for the same registry.
    """

    def __init__(self, registry: "PeerRegistry", presence: "PresenceNotifier"):
        self.registry = registry
        self.presence = presence

    def on_open(self, connection: "PeerConnection") -> None:
        logger.info(
            f"Connection {connection.label} opened from {connection.remote_address} "
            f"(registered peers: {len(self.registry)})"
        )

    async def on_close(self, connection: "PeerConnection") -> None:
        """Unbind the connection and tell its counterpart it went offline."""
        if not connection.mark_closed():
            logger.debug(f"Connection {connection.label} already cleaned up")
            return

        async with self.registry.lock:
            identity = self.registry.unregister_by_connection(connection)
            deliveries = self.presence.on_disconnect(identity) if identity else []

        if identity:
            logger.info(
                f"Disconnected peer: {identity} "
                f"(remaining: {len(self.registry)})"
            )
        elif connection.identity:
            logger.info(
                f"Connection {connection.label} closed; identity "
                f"'{connection.identity}' was already superseded"
            )
        else:
            logger.info(f"Connection {connection.label} closed before registering")

        await self.deliver(deliveries)

    async def on_transport_error(
        self, connection: "PeerConnection", error: BaseException
    ) -> None:
        """Treat a transport failure exactly like a close."""
        if not connection.closed:
            logger.error(f"Transport error on connection {connection.label}: {error}")
        await self.on_close(connection)

    async def release_identity(
        self, connection: "PeerConnection", identity: str
    ) -> None:
        """Drop ``identity`` from a connection that is re-registering as someone else."""
        async with self.registry.lock:
            removed = self.registry.unregister(identity, connection)
            deliveries = self.presence.on_disconnect(identity) if removed else []

        if removed:
            logger.info(f"Connection {connection.label} released identity {identity}")
        await self.deliver(deliveries)

    async def supersede(self, connection: "PeerConnection") -> None:
        """Close a connection whose identity was taken over by a newer one."""
        connection.mark_closed()
        try:
            await connection.close(4000, "superseded")
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Superseded connection {connection.label} close failed: {e}")

    async def deliver(self, deliveries: Iterable["Delivery"]) -> None:
        """Send each frame once. Failures trigger cleanup of the failed target.

        Must be called without holding the registry lock.
        """
        for delivery in deliveries:
            target = delivery.connection
            if target.closed:
                logger.debug(
                    f"Skipping {delivery.frame.get('type')} for closed connection "
                    f"{target.label}"
                )
                continue
            try:
                await target.send(delivery.frame)
            except (ConnectionClosed, OSError) as e:
                await self.on_transport_error(
                    target, TransportError(f"Send to {target.label} failed: {e}")
                )
