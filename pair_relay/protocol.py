"""Message protocol definitions for pair-relay.

This module defines the JSON messages exchanged between the relay and its two
kinds of clients (a remote-controlled device and its operator console) over
the signaling WebSocket. Every transport frame carries exactly one JSON object.

Message Types
-------------

### Registration (client -> relay)

**{"type": "registration", "id": "<identity>"}**
**{"type": "hello", "id": "<identity>"}**
    Binds ``id`` to the sending connection. Both spellings are accepted.

### Explicit signaling (client -> relay -> client)

**{"type": "signal", "id": "<sender>", "to": "<target>", "data": {...}}**
    Sent by: Either peer
    The relay forwards ``data`` to ``to`` re-wrapped as
    ``{"type": "signal", "from": "<sender>", "data": {...}}``.

### Implicit signaling (client -> relay -> paired client)

**{"type": "offer" | "answer" | "candidate" | "offer_request", ...}**
    Sent by: Either peer
    Forwarded verbatim to the statically paired counterpart.

### Presence (relay -> client only)

**{"type": "remote-peer-online"}**
    The counterpart of the receiving peer is registered.

**{"type": "remote-peer-offline"}**
    The counterpart of the receiving peer is not registered.

Delivery Semantics
------------------

There are no acknowledgment frames. The relay never replies to a message it
drops; the sender only ever learns about its counterpart through presence
frames. SDP and ICE payloads are opaque to the relay.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

# Registration
MSG_REGISTRATION = "registration"
MSG_HELLO = "hello"

# Signaling
MSG_SIGNAL = "signal"
MSG_OFFER = "offer"
MSG_ANSWER = "answer"
MSG_CANDIDATE = "candidate"
MSG_OFFER_REQUEST = "offer_request"

# Presence
MSG_PEER_ONLINE = "remote-peer-online"
MSG_PEER_OFFLINE = "remote-peer-offline"

REGISTRATION_TYPES = frozenset({MSG_REGISTRATION, MSG_HELLO})
SIGNAL_KINDS = frozenset({MSG_OFFER, MSG_ANSWER, MSG_CANDIDATE, MSG_OFFER_REQUEST})
PRESENCE_TYPES = frozenset({MSG_PEER_ONLINE, MSG_PEER_OFFLINE})


# =============================================================================
# Errors
# =============================================================================


class RelayError(Exception):
    """Base class for all recoverable relay errors.

    None of these are fatal to the process; each one is handled inside the
    connection that caused it.
    """


class ParseError(RelayError):
    """Message body is not a well-formed JSON message object."""


class InvalidRegistration(RelayError):
    """Registration message without a usable identity."""


class InvalidState(RelayError):
    """Signaling message received on a connection that is not registered."""


class UnregisteredTarget(RelayError):
    """Destination identity has no live connection."""


class UnknownMessageType(RelayError):
    """Message type is not one the relay accepts from clients."""


class TransportError(RelayError):
    """Sending to a peer connection failed."""


# =============================================================================
# Inbound messages
# =============================================================================


@dataclass(frozen=True)
class Registration:
    """A request to bind ``identity`` to the sending connection."""

    identity: str


@dataclass(frozen=True)
class Signal:
    """A handshake message to be relayed to another peer.

    Attributes:
        kind: Message type of the handshake payload (``offer``, ``answer``,
            ``candidate``, ``offer_request``), or ``None`` when an envelope's
            payload does not name one.
        payload: For an envelope, the ``data`` field; otherwise the complete
            message as received.
        envelope: True for the explicit ``signal`` form, which is re-wrapped
            with a ``from`` tag on delivery. False for bare signaling
            messages, which are delivered verbatim.
        sender: Identity claimed by the message (``id``), if any.
        destination: Explicit destination identity (``to``), if any.
    """

    kind: Optional[str]
    payload: Any
    envelope: bool = False
    sender: Optional[str] = None
    destination: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def outbound(self, sender_identity: str) -> Dict[str, Any]:
        """Build the frame delivered to the destination connection."""
        if self.envelope:
            return relayed_signal(sender_identity, self.payload)
        return self.payload


Message = Union[Registration, Signal]


def _optional_identity(message: dict, key: str) -> Optional[str]:
    value = message.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ParseError(f"Field '{key}' must be a string, got {type(value).__name__}")
    return value


def parse_message(raw: Union[str, bytes]) -> Message:
    """Decode and classify one inbound frame.

    Args:
        raw: Text or binary frame received from a client.

    Returns:
        A ``Registration`` or ``Signal``.

    Raises:
        ParseError: Frame is not UTF-8 JSON, is not an object, has no string
            ``type``, or is a ``signal`` envelope without ``data``.
        InvalidRegistration: Registration without a non-empty string ``id``.
        UnknownMessageType: Any other ``type``, including presence types.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Frame is not valid UTF-8: {e}") from e

    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(message, dict):
        raise ParseError(f"Expected a JSON object, got {type(message).__name__}")

    msg_type = message.get("type")
    if not isinstance(msg_type, str):
        raise ParseError("Missing or non-string 'type' field")

    if msg_type in REGISTRATION_TYPES:
        identity = message.get("id")
        if not isinstance(identity, str) or not identity:
            raise InvalidRegistration(f"'{msg_type}' message without a valid 'id'")
        return Registration(identity=identity)

    if msg_type == MSG_SIGNAL:
        if "data" not in message or message["data"] is None:
            raise ParseError("'signal' envelope without 'data'")
        data = message["data"]
        kind = data.get("type") if isinstance(data, dict) else None
        return Signal(
            kind=kind if isinstance(kind, str) else None,
            payload=data,
            envelope=True,
            sender=_optional_identity(message, "id"),
            destination=_optional_identity(message, "to"),
            raw=message,
        )

    if msg_type in SIGNAL_KINDS:
        return Signal(
            kind=msg_type,
            payload=message,
            envelope=False,
            sender=_optional_identity(message, "id"),
            raw=message,
        )

    raise UnknownMessageType(f"Unsupported message type '{msg_type}'")


# =============================================================================
# Outbound frames
# =============================================================================


def relayed_signal(sender: str, data: Any) -> Dict[str, Any]:
    return {"type": MSG_SIGNAL, "from": sender, "data": data}


def presence_frame(online: bool) -> Dict[str, str]:
    return {"type": MSG_PEER_ONLINE if online else MSG_PEER_OFFLINE}


def encode(frame: Dict[str, Any]) -> str:
    """Serialize an outbound frame as one JSON text message."""
    return json.dumps(frame)
