"""Peer registry: which identity is reachable over which connection.

The registry is the single source of truth for presence. It is created once
per relay and handed to the router and lifecycle manager; nothing else holds
relay state.

Compound operations (register + presence computation, unregister + presence
computation) must run while holding ``PeerRegistry.lock`` so that concurrent
handlers observe them atomically. The lock must never be held across a send
to another connection.

No ``await`` may appear inside a block holding the lock: on one event loop the
lock is then never contended and never held across a send.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from pair_relay.protocol import InvalidRegistration

if TYPE_CHECKING:
    from pair_relay.connection import PeerConnection


@dataclass(frozen=True)
class PeerRecord:
    """A live identity binding. Replaced wholesale, never mutated."""

    identity: str
    connection: "PeerConnection"
    registered_at: float = field(default_factory=time.monotonic)


class PeerRegistry:
    """Mapping of identity to its live ``PeerRecord``.

    At most one record exists per identity; a later registration for the same
    identity replaces the earlier one (last writer wins).
    """

    def __init__(self):
        self._peers: Dict[str, PeerRecord] = {}
        self.lock = asyncio.Lock()

    def register(
        self, identity: str, connection: "PeerConnection"
    ) -> Optional["PeerConnection"]:
        """Insert or overwrite the record for ``identity``.

        Args:
            identity: Non-empty identity string.
            connection: Connection to bind.

        Returns:
            The superseded connection, if a different connection was
            registered under ``identity``. The registry does not close it.

        Raises:
            InvalidRegistration: If ``identity`` is empty or not a string.
        """
        if not isinstance(identity, str) or not identity:
            raise InvalidRegistration(f"Invalid identity: {identity!r}")

        previous = self._peers.get(identity)
        self._peers[identity] = PeerRecord(identity=identity, connection=connection)

        if previous is not None and previous.connection is not connection:
            return previous.connection
        return None

    def lookup(self, identity: Optional[str]) -> Optional["PeerConnection"]:
        if identity is None:
            return None
        record = self._peers.get(identity)
        return record.connection if record else None

    def get_record(self, identity: str) -> Optional[PeerRecord]:
        return self._peers.get(identity)

    def unregister(self, identity: str, connection: "PeerConnection") -> bool:
        """Remove ``identity`` only if it is still bound to ``connection``."""
        record = self._peers.get(identity)
        if record is not None and record.connection is connection:
            del self._peers[identity]
            return True
        return False

    def unregister_by_connection(self, connection: "PeerConnection") -> Optional[str]:
        """Reverse lookup and removal.

        Used on disconnect, when only the connection handle is known. A
        connection that was superseded by a newer registration no longer owns
        any record, so nothing is removed for it.

        Returns:
            The identity that was bound to ``connection``, or None.
        """
        for identity, record in self._peers.items():
            if record.connection is connection:
                del self._peers[identity]
                return identity
        return None

    def identities(self) -> List[str]:
        return sorted(self._peers)

    def __contains__(self, identity: object) -> bool:
        return identity in self._peers

    def __len__(self) -> int:
        return len(self._peers)
