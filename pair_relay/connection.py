"""Per-connection state for the signaling relay."""

import itertools
from enum import Enum
from typing import Any, Dict, Optional

from loguru import logger

from pair_relay.protocol import encode

_connection_ids = itertools.count(1)


class ConnectionState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    CLOSED = "closed"


class PeerConnection:
    """One client connection and the identity bound to it.

    The relay only ever talks to the transport through ``send`` and ``close``,
    so any object exposing ``async send(str)`` and ``async close(code, reason)``
    (a ``websockets`` server connection in production) can be wrapped.

    Attributes:
        transport: Underlying transport handle.
        conn_id: Process-unique connection number, used in log messages.
        remote_address: Peer address reported by the transport, if any.
        identity: Identity bound by the most recent registration, or None.
        state: Current ``ConnectionState``.
    """

    def __init__(self, transport: Any, remote_address: Optional[Any] = None):
        self.transport = transport
        self.conn_id = next(_connection_ids)
        if remote_address is None:
            remote_address = getattr(transport, "remote_address", None)
        self.remote_address = remote_address
        self.identity: Optional[str] = None
        self.state = ConnectionState.UNREGISTERED

    @property
    def registered(self) -> bool:
        return self.state is ConnectionState.REGISTERED

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def bind(self, identity: str) -> Optional[str]:
        """Bind ``identity`` to this connection.

        Returns:
            The previously bound identity when it differs from ``identity``,
            otherwise None.

        Raises:
            RuntimeError: If the connection is already closed.
        """
        if self.closed:
            raise RuntimeError(f"Cannot bind identity on closed connection #{self.conn_id}")
        previous = self.identity if self.identity != identity else None
        self.identity = identity
        self.state = ConnectionState.REGISTERED
        return previous

    def mark_closed(self) -> bool:
        """Transition to CLOSED.

        Returns:
            True on the first call, False if the connection was already closed.
        """
        if self.closed:
            return False
        self.state = ConnectionState.CLOSED
        return True

    async def send(self, frame: Dict[str, Any]) -> None:
        await self.transport.send(encode(frame))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        logger.debug(f"Closing connection {self.label} ({code} {reason})")
        await self.transport.close(code, reason)

    @property
    def label(self) -> str:
        if self.identity:
            return f"#{self.conn_id} ({self.identity})"
        return f"#{self.conn_id}"

    def __repr__(self) -> str:
        return (
            f"PeerConnection(conn_id={self.conn_id}, identity={self.identity!r}, "
            f"state={self.state.value})"
        )
