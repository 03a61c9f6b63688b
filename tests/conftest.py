import pytest

from switchboard.mailbox import Answer, NegotiationItem, Offer
from switchboard.registry import NetworkRegistry

WALL_START = 1_700_000_000.0


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def offer(sender: str, recipient: str, connection_id: str = "c1", sdp: str = "x", **kwargs):
    """Helper to build an offer item the way the transport would."""
    return NegotiationItem(sender=sender, recipient=recipient, payload=Offer(connection_id, sdp), **kwargs)


def answer(sender: str, recipient: str, connection_id: str = "c1", sdp: str = "y", **kwargs):
    return NegotiationItem(sender=sender, recipient=recipient, payload=Answer(connection_id, sdp), **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return NetworkRegistry(
        address_ttl=30,
        negotiation_ttl=30,
        max_items=2,
        clock=clock,
        wall_clock=lambda: WALL_START,
    )
