"""Wire encoding for relay responses and the registry dump."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping

import orjson

from ..mailbox import NegotiationItem
from ..registry import Exchange, NetworkView

EpochMs = Callable[[float], int]


def dumps(payload: Any) -> bytes:
    """Return the compact JSON encoding of *payload*."""

    return orjson.dumps(payload)


def negotiation_to_wire(item: NegotiationItem) -> Dict[str, Any]:
    payload = item.payload
    return {
        **payload.extra,
        "type": payload.type,
        "sdp": payload.sdp,
        "connectionId": payload.connection_id,
    }


def item_to_wire(item: NegotiationItem, epoch_ms: EpochMs) -> Dict[str, Any]:
    return {
        "for": item.recipient,
        "from": item.sender,
        "negotiation": negotiation_to_wire(item),
        "timestamp": epoch_ms(item.enqueued_at),
    }


def exchange_to_wire(exchange: Exchange, epoch_ms: EpochMs) -> Dict[str, Any]:
    return {
        "addresses": list(exchange.addresses),
        "negotiationItems": [item_to_wire(item, epoch_ms) for item in exchange.negotiation_items],
    }


def registry_to_wire(views: Mapping[str, NetworkView], epoch_ms: EpochMs) -> Dict[str, Any]:
    return {
        network_id: {
            "addresses": {addr: epoch_ms(seen) for addr, seen in view.addresses.items()},
            "negotiationItems": [item_to_wire(item, epoch_ms) for item in view.negotiation_items],
        }
        for network_id, view in views.items()
    }


__all__ = ["dumps", "exchange_to_wire", "item_to_wire", "negotiation_to_wire", "registry_to_wire"]
