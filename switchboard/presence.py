"""Per-network presence tracking with time-to-live semantics."""

from __future__ import annotations

from typing import Dict, List, Set


class PresenceTable:
    """Map of peer address -> last time that address contacted the relay.

    Insertion order is preserved so snapshots list addresses in the order
    they first appeared on the network.
    """

    def __init__(self) -> None:
        self.last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self.last_seen)

    def __contains__(self, address: object) -> bool:
        return address in self.last_seen

    def touch(self, address: str, now: float) -> None:
        """Record or refresh ``address`` as seen at ``now``."""

        self.last_seen[address] = now

    def snapshot(self) -> List[str]:
        return list(self.last_seen)

    def evict_expired(self, now: float, ttl: float) -> Set[str]:
        """Drop every address whose age exceeds ``ttl`` and return them."""

        departed = {addr for addr, seen in self.last_seen.items() if (now - seen) > ttl}
        for addr in departed:
            del self.last_seen[addr]
        return departed

    def is_empty(self) -> bool:
        return not self.last_seen


__all__ = ["PresenceTable"]
