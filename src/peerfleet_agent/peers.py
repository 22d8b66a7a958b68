"""Pass-scoped bootstrap address book.

Nodes are reconciled in spec order. After a bootstrap-contributing node is
converged its address is appended here, so node i only ever sees addresses
of contributing nodes before it. The resulting graph is deliberately
one-directional; list every node as a bootnode to get a full mesh.

A new book is created for every pass and dropped when the pass ends.
"""

from typing import List, Tuple


class PeerAddressBook:
    """Ordered, append-only sequence of peer addresses."""

    def __init__(self):
        self._entries: List[str] = []

    def append(self, address: str) -> None:
        if not address:
            raise ValueError("peer address must not be empty")
        self._entries.append(address)

    def snapshot(self) -> Tuple[str, ...]:
        """Addresses appended so far, as an immutable tuple."""
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
