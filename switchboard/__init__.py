"""Switchboard: rendezvous relay for WebRTC offer/answer exchange.

Provides:
 - in-memory presence tables and negotiation mailboxes per network
 - FastAPI poll/submit endpoint with periodic sweeping of idle networks

See switchboard/api.py for the app entry point.
"""

from .mailbox import Answer, NegotiationItem, NegotiationMailbox, Offer
from .presence import PresenceTable
from .registry import Exchange, NetworkRegistry

__version__ = "0.1.3"

__all__ = [
    "Answer",
    "Exchange",
    "NegotiationItem",
    "NegotiationMailbox",
    "NetworkRegistry",
    "Offer",
    "PresenceTable",
]
