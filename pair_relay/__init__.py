"""WebRTC signaling relay for a paired device and operator console.

This package provides:
- protocol: JSON message types, parsing and the relay error taxonomy
- registry: Identity -> live connection mapping
- pairing: Static pairing table and destination resolution
- presence: Online/offline notifications for paired peers
- router / lifecycle: Per-connection message handling and cleanup
- server: The WebSocket relay
- config: Layered TOML/environment configuration
"""

__version__ = "0.1.0"

from pair_relay.config import Config, ConfigError, RelayConfig
from pair_relay.connection import ConnectionState, PeerConnection
from pair_relay.lifecycle import LifecycleManager
from pair_relay.pairing import PairingResolver, PairingTable
from pair_relay.presence import Delivery, PresenceNotifier
from pair_relay.protocol import (
    InvalidRegistration,
    InvalidState,
    ParseError,
    RelayError,
    TransportError,
    UnknownMessageType,
    UnregisteredTarget,
    parse_message,
)
from pair_relay.registry import PeerRecord, PeerRegistry
from pair_relay.router import MessageRouter
from pair_relay.server import RelayServer

__all__ = [
    # Configuration
    "Config",
    "ConfigError",
    "RelayConfig",
    # Core
    "PeerConnection",
    "ConnectionState",
    "PeerRegistry",
    "PeerRecord",
    "PairingTable",
    "PairingResolver",
    "PresenceNotifier",
    "Delivery",
    "LifecycleManager",
    "MessageRouter",
    "RelayServer",
    # Protocol
    "parse_message",
    "RelayError",
    "ParseError",
    "InvalidRegistration",
    "InvalidState",
    "UnregisteredTarget",
    "UnknownMessageType",
    "TransportError",
]
