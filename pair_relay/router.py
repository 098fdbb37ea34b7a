"""Message routing for the signaling relay.

Each connection moves through a small state machine:

    UNREGISTERED --registration--> REGISTERED --registration--> REGISTERED
         |                              |
         +------------close-------------+--------> CLOSED

Signaling messages are only accepted in REGISTERED. Every failure is logged
and the message dropped; the sender never receives an error frame.
"""

from typing import TYPE_CHECKING, Union

from loguru import logger

from pair_relay.presence import Delivery
from pair_relay.protocol import (
    InvalidRegistration,
    InvalidState,
    ParseError,
    Registration,
    RelayError,
    Signal,
    UnknownMessageType,
    UnregisteredTarget,
    parse_message,
)

if TYPE_CHECKING:
    from pair_relay.connection import PeerConnection
    from pair_relay.lifecycle import LifecycleManager
    from pair_relay.pairing import PairingResolver
    from pair_relay.presence import PresenceNotifier
    from pair_relay.registry import PeerRegistry

REPLACE_KEEP = "keep"
REPLACE_CLOSE = "close"
VALID_REPLACE_POLICIES = {REPLACE_KEEP, REPLACE_CLOSE}


class MessageRouter:
    """Parses inbound frames and registers or forwards them.

    Attributes:
        registry: Shared peer registry.
        resolver: Destination resolver (static pairing or explicit ``to``).
        presence: Presence notifier, invoked after every registration.
        lifecycle: Lifecycle manager used for delivery and cleanup.
        replace_policy: What to do with a connection whose identity is
            re-registered by another connection: ``keep`` leaves it open but
            unreachable, ``close`` closes it.
    """

    def __init__(
        self,
        registry: "PeerRegistry",
        resolver: "PairingResolver",
        presence: "PresenceNotifier",
        lifecycle: "LifecycleManager",
        replace_policy: str = REPLACE_KEEP,
    ):
        if replace_policy not in VALID_REPLACE_POLICIES:
            raise ValueError(f"Invalid replace policy '{replace_policy}'")
        self.registry = registry
        self.resolver = resolver
        self.presence = presence
        self.lifecycle = lifecycle
        self.replace_policy = replace_policy

    async def on_message(
        self, connection: "PeerConnection", raw: Union[str, bytes]
    ) -> None:
        """Handle one inbound frame. Never raises a ``RelayError``."""
        if connection.closed:
            logger.debug(f"Ignoring message on closed connection {connection.label}")
            return

        try:
            message = parse_message(raw)
            if isinstance(message, Registration):
                await self._register(connection, message)
            else:
                await self._forward(connection, message)
        except ParseError as e:
            logger.warning(f"Dropped malformed message from {connection.label}: {e}")
        except InvalidRegistration as e:
            logger.warning(f"Registration refused for {connection.label}: {e}")
        except InvalidState as e:
            logger.warning(f"Dropped message from {connection.label}: {e}")
        except UnregisteredTarget as e:
            logger.warning(f"Failure to forward message from {connection.label}: {e}")
        except UnknownMessageType as e:
            logger.warning(f"Dropped message from {connection.label}: {e}")
        except RelayError as e:
            logger.error(f"Unhandled relay error on {connection.label}: {e}")

    async def _register(self, connection: "PeerConnection", message: Registration):
        identity = message.identity
        previous_identity = connection.identity

        if previous_identity and previous_identity != identity:
            await self.lifecycle.release_identity(connection, previous_identity)
            if connection.closed:
                return

        async with self.registry.lock:
            superseded = self.registry.register(identity, connection)
            connection.bind(identity)
            deliveries = self.presence.on_register(identity)

        logger.info(
            f"Registered peer: {identity} on connection #{connection.conn_id} "
            f"(total: {len(self.registry)})"
        )

        if superseded is not None:
            logger.warning(
                f"Identity {identity} re-registered; connection "
                f"#{superseded.conn_id} superseded (policy: {self.replace_policy})"
            )
            if self.replace_policy == REPLACE_CLOSE:
                await self.lifecycle.supersede(superseded)

        await self.lifecycle.deliver(deliveries)

    async def _forward(self, connection: "PeerConnection", signal: Signal):
        if not connection.registered:
            raise InvalidState(
                f"'{signal.raw.get('type')}' received before registration"
            )

        sender = connection.identity
        if self.registry.lookup(sender) is not connection:
            raise InvalidState(f"Identity {sender} was taken over by another connection")

        if signal.sender is not None and signal.sender != sender:
            logger.warning(
                f"Connection {connection.label} claimed id '{signal.sender}'; "
                f"using registered identity"
            )

        destination = self.resolver.resolve(sender, signal.destination)
        if destination is None:
            raise UnregisteredTarget(f"No destination resolved for {sender}")

        target = self.registry.lookup(destination)
        if target is None:
            raise UnregisteredTarget(f"Target peer {destination} not connected")

        logger.info(
            f"Forwarding {signal.kind or 'signal'} from {sender} to {destination}"
        )
        logger.debug(f"Payload: {signal.payload}")
        await self.lifecycle.deliver([Delivery(target, signal.outbound(sender))])
