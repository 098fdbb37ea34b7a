"""Presence notifications for paired peers.

Presence is computed fresh from registry state every time; nothing is cached.
Both hooks only compute the frames to send. Callers run them while holding the
registry lock and send the resulting deliveries after releasing it.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from loguru import logger

from pair_relay.protocol import presence_frame

if TYPE_CHECKING:
    from pair_relay.connection import PeerConnection
    from pair_relay.pairing import PairingResolver
    from pair_relay.registry import PeerRegistry


@dataclass(frozen=True)
class Delivery:
    """A frame addressed to one connection."""

    connection: "PeerConnection"
    frame: Dict[str, Any]


class PresenceNotifier:
    """Computes online/offline frames when registry membership changes.

    Attributes:
        registry: Registry consulted for live connections.
        resolver: Resolver providing each identity's counterpart.
    """

    def __init__(self, registry: "PeerRegistry", resolver: "PairingResolver"):
        self.registry = registry
        self.resolver = resolver

    def on_register(self, identity: str) -> List[Delivery]:
        """Presence after ``identity`` registered.

        If the counterpart is live, both sides are told ``online``. Otherwise
        only the newly registered side is told ``offline``.
        """
        connection = self.registry.lookup(identity)
        if connection is None:
            return []

        counterpart = self.resolver.counterpart(identity)
        counterpart_conn = self.registry.lookup(counterpart)

        if counterpart_conn is None:
            logger.debug(f"Counterpart of {identity} ({counterpart}) is offline")
            return [Delivery(connection, presence_frame(online=False))]

        logger.info(f"Peers online: {identity} <-> {counterpart}")
        return [
            Delivery(connection, presence_frame(online=True)),
            Delivery(counterpart_conn, presence_frame(online=True)),
        ]

    def on_disconnect(self, identity: Optional[str]) -> List[Delivery]:
        """Presence after ``identity`` left: tell its counterpart, if live."""
        counterpart = self.resolver.counterpart(identity)
        counterpart_conn = self.registry.lookup(counterpart)
        if counterpart_conn is None:
            return []

        logger.info(f"Notifying {counterpart} that {identity} went offline")
        return [Delivery(counterpart_conn, presence_frame(online=False))]
