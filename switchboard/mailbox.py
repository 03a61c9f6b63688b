"""Buffered offer/answer negotiations awaiting pickup by their recipient."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Set, Union


@dataclass(frozen=True)
class _Negotiation:
    connection_id: str
    sdp: str
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only copy; buffered payloads are shared with every reader.
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))


@dataclass(frozen=True)
class Offer(_Negotiation):
    type: str = field(default="offer", init=False)


@dataclass(frozen=True)
class Answer(_Negotiation):
    type: str = field(default="answer", init=False)


NegotiationPayload = Union[Offer, Answer]


@dataclass(frozen=True)
class NegotiationItem:
    """``sender`` wants ``recipient`` to see ``payload``.

    ``enqueued_at`` is stamped by the mailbox on append when left unset.
    """

    sender: str
    recipient: str
    payload: NegotiationPayload
    enqueued_at: Optional[float] = None


class NegotiationMailbox:
    """Arrival-ordered sequence of negotiation items for one network.

    Delivery does not remove an item; items leave only through one of the
    eviction passes below.
    """

    def __init__(self) -> None:
        self.items: List[NegotiationItem] = []

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def append(self, items: Iterable[NegotiationItem], now: float) -> List[NegotiationItem]:
        """Append ``items`` in order, stamping unstamped ones with ``now``."""

        stamped = [
            item if item.enqueued_at is not None else replace(item, enqueued_at=now)
            for item in items
        ]
        self.items.extend(stamped)
        return stamped

    def drain_for(self, address: str) -> List[NegotiationItem]:
        """Return every item addressed to ``address`` without removing it."""

        return [item for item in self.items if item.recipient == address]

    def evict_by_age(self, now: float, max_age: float) -> int:
        kept = [item for item in self.items if (now - item.enqueued_at) <= max_age]
        return self._replace(kept)

    def evict_by_departed_addresses(self, departed: Set[str]) -> int:
        if not departed:
            return 0
        kept = [
            item
            for item in self.items
            if item.sender not in departed and item.recipient not in departed
        ]
        return self._replace(kept)

    def trim_to_capacity(self, max_items: int) -> int:
        """Drop the oldest items so at most ``max_items`` remain."""

        excess = len(self.items) - max_items
        if excess <= 0:
            return 0
        del self.items[:excess]
        return excess

    def evict_answered_offers(self, answers: Iterable[NegotiationItem]) -> int:
        """Remove offers already answered by one of ``answers``.

        An offer matches an answer when both carry the same connection id and
        the answer travels back along the offer's path (answer recipient is
        the offer sender and vice versa).
        """

        answered = {
            (item.payload.connection_id, item.recipient, item.sender)
            for item in answers
            if isinstance(item.payload, Answer)
        }
        if not answered:
            return 0
        kept = [
            item
            for item in self.items
            if not (
                isinstance(item.payload, Offer)
                and (item.payload.connection_id, item.sender, item.recipient) in answered
            )
        ]
        return self._replace(kept)

    def _replace(self, kept: List[NegotiationItem]) -> int:
        removed = len(self.items) - len(kept)
        self.items = kept
        return removed


__all__ = [
    "Answer",
    "NegotiationItem",
    "NegotiationMailbox",
    "NegotiationPayload",
    "Offer",
]
