"""Pairing table and destination resolution."""

from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from loguru import logger

ADDRESSING_AUTO = "auto"
ADDRESSING_STATIC = "static"
ADDRESSING_EXPLICIT = "explicit"
VALID_ADDRESSING = {ADDRESSING_AUTO, ADDRESSING_STATIC, ADDRESSING_EXPLICIT}


class PairingTable:
    """Fixed, symmetric association between peer identities.

    Built from a one-directional mapping such as ``{"device": "console"}``;
    the reverse direction is filled in automatically, so that
    ``table.pair(table.pair(x)) == x`` for every identity in the table.

    Raises:
        ValueError: If an identity is paired with itself, an identity is
            empty, or two entries assign one identity different counterparts.
    """

    def __init__(self, pairs: Optional[Mapping[str, str]] = None):
        table: Dict[str, str] = {}
        for left, right in (pairs or {}).items():
            if not isinstance(left, str) or not isinstance(right, str):
                raise ValueError(f"Pairing entries must be strings: {left!r} = {right!r}")
            if not left or not right:
                raise ValueError("Pairing identities cannot be empty")
            if left == right:
                raise ValueError(f"Identity cannot be paired with itself: {left}")
            for a, b in ((left, right), (right, left)):
                existing = table.get(a)
                if existing is not None and existing != b:
                    raise ValueError(
                        f"Conflicting pairings for '{a}': '{existing}' and '{b}'"
                    )
                table[a] = b
        self._table = MappingProxyType(table)

    def pair(self, identity: Optional[str]) -> Optional[str]:
        if identity is None:
            return None
        return self._table.get(identity)

    def pairs(self) -> Iterator[Tuple[str, str]]:
        """Yield each pairing once, in sorted order."""
        for left, right in sorted(self._table.items()):
            if left < right:
                yield left, right

    def as_dict(self) -> Dict[str, str]:
        return dict(self._table)

    def __contains__(self, identity: object) -> bool:
        return identity in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PairingTable):
            return NotImplemented
        return self._table == other._table

    def __repr__(self) -> str:
        return f"PairingTable({dict(self.pairs())!r})"


class PairingResolver:
    """Decide who a message is meant for.

    Two strategies sit behind ``resolve`` so the router never needs to know
    which one a deployment uses:

    - explicit addressing: the message's ``to`` field names the destination.
    - implicit pairing: the destination is the sender's counterpart in the
      static pairing table.

    ``addressing`` selects between them: ``auto`` honors an explicit
    destination and falls back to the pairing table, ``static`` only uses the
    pairing table, and ``explicit`` only uses the ``to`` field.

    Presence always uses the pairing table (``counterpart``), regardless of
    addressing mode.
    """

    def __init__(self, table: PairingTable, addressing: str = ADDRESSING_AUTO):
        if addressing not in VALID_ADDRESSING:
            raise ValueError(
                f"Invalid addressing mode '{addressing}'. "
                f"Valid values are: {', '.join(sorted(VALID_ADDRESSING))}"
            )
        self.table = table
        self.addressing = addressing

    def resolve(
        self, sender: Optional[str], explicit_destination: Optional[str] = None
    ) -> Optional[str]:
        if self.addressing == ADDRESSING_EXPLICIT:
            return explicit_destination

        if self.addressing == ADDRESSING_STATIC:
            if explicit_destination is not None:
                logger.debug(
                    f"Ignoring explicit destination '{explicit_destination}' "
                    f"from {sender} (static addressing)"
                )
            return self.table.pair(sender)

        if explicit_destination is not None:
            return explicit_destination
        return self.table.pair(sender)

    def counterpart(self, identity: Optional[str]) -> Optional[str]:
        return self.table.pair(identity)
