"""Network registry: one presence table and one mailbox per network id.

The registry runs the relay exchange for a single request::

    locate/create network -> touch requester -> append outgoing items
    -> evict departed addresses (and their items) -> evict aged items
    -> collect items for the requester -> respond -> trim to capacity
    -> drop the network if nobody is present

Each network carries its own lock. A request or a sweep holds that lock for
the whole sequence, so nothing interleaves with an in-flight exchange. The
registry-wide lock only guards the network map itself and is always taken
after (never before) a network lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Tuple

from .mailbox import NegotiationItem, NegotiationMailbox
from .presence import PresenceTable

log = logging.getLogger("switchboard.registry")

Clock = Callable[[], float]


@dataclass
class NetworkState:
    presence: PresenceTable = field(default_factory=PresenceTable)
    mailbox: NegotiationMailbox = field(default_factory=NegotiationMailbox)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    retired: bool = False


@dataclass
class Exchange:
    """Result of one poll: everyone present plus the items for the requester."""

    addresses: List[str]
    negotiation_items: List[NegotiationItem]


@dataclass
class NetworkView:
    addresses: Dict[str, float]
    negotiation_items: List[NegotiationItem]


@dataclass
class SweepReport:
    networks_scanned: int = 0
    networks_reclaimed: int = 0
    addresses_evicted: int = 0
    items_evicted: int = 0


class NetworkRegistry:
    def __init__(
        self,
        *,
        address_ttl: float = 30.0,
        negotiation_ttl: float = 30.0,
        max_items: int = 500,
        match_negotiations: bool = False,
        clock: Clock = time.monotonic,
        wall_clock: Clock = time.time,
    ) -> None:
        self.address_ttl = address_ttl
        self.negotiation_ttl = negotiation_ttl
        self.max_items = max_items
        self.match_negotiations = match_negotiations
        self._clock = clock
        # Fixed offset between the monotonic clock and wall time.
        self._epoch_offset = wall_clock() - clock()
        self._networks: Dict[str, NetworkState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "NetworkRegistry":
        return cls(
            address_ttl=settings.address_ttl,
            negotiation_ttl=settings.negotiation_ttl,
            max_items=settings.max_negotiation_items,
            match_negotiations=settings.match_negotiations,
            **kwargs,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._networks)

    def __contains__(self, network_id: object) -> bool:
        with self._lock:
            return network_id in self._networks

    def epoch_ms(self, timestamp: float) -> int:
        """Convert a registry clock reading into wall-clock milliseconds."""

        return int(round((timestamp + self._epoch_offset) * 1000))

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def exchange(
        self,
        network_id: str,
        address: str,
        outgoing: Iterable[NegotiationItem] = (),
    ) -> Exchange:
        """Run one poll/submit for ``address`` on ``network_id``."""

        outgoing = list(outgoing)
        while True:
            state = self._locate_or_create(network_id)
            with state.lock:
                # Lost a race with a reclaim of this network; start over.
                if state.retired:
                    continue
                now = self._clock()
                state.presence.touch(address, now)
                appended = state.mailbox.append(outgoing, now)
                if self.match_negotiations:
                    state.mailbox.evict_answered_offers(appended)
                departed = state.presence.evict_expired(now, self.address_ttl)
                state.mailbox.evict_by_departed_addresses(departed)
                state.mailbox.evict_by_age(now, self.negotiation_ttl)

                response = Exchange(
                    addresses=state.presence.snapshot(),
                    negotiation_items=state.mailbox.drain_for(address),
                )

                state.mailbox.trim_to_capacity(self.max_items)
                if state.presence.is_empty():
                    self._retire(network_id, state)

            log.debug(
                "exchange network=%s address=%s in=%d out=%d addresses=%d",
                network_id,
                address,
                len(outgoing),
                len(response.negotiation_items),
                len(response.addresses),
            )
            return response

    def sweep(self) -> SweepReport:
        """Prune every network without serving a requester.

        Networks nobody polls anymore are only reclaimed here.
        """

        report = SweepReport()
        for network_id, state in self._snapshot_networks():
            with state.lock:
                if state.retired:
                    continue
                report.networks_scanned += 1
                now = self._clock()
                departed = state.presence.evict_expired(now, self.address_ttl)
                report.addresses_evicted += len(departed)
                report.items_evicted += state.mailbox.evict_by_departed_addresses(departed)
                report.items_evicted += state.mailbox.evict_by_age(now, self.negotiation_ttl)
                if state.presence.is_empty():
                    self._retire(network_id, state)
                    report.networks_reclaimed += 1
        log.debug(
            "sweep scanned=%d reclaimed=%d addresses_evicted=%d items_evicted=%d",
            report.networks_scanned,
            report.networks_reclaimed,
            report.addresses_evicted,
            report.items_evicted,
        )
        return report

    def teardown(self) -> None:
        """Drop all state."""

        with self._lock:
            for state in self._networks.values():
                state.retired = True
            self._networks.clear()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def list_all(self) -> Dict[str, NetworkView]:
        """Return a copy of every network's contents. Never evicts."""

        views: Dict[str, NetworkView] = {}
        for network_id, state in self._snapshot_networks():
            with state.lock:
                if state.retired:
                    continue
                views[network_id] = NetworkView(
                    addresses=dict(state.presence.last_seen),
                    negotiation_items=list(state.mailbox),
                )
        return views

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _locate_or_create(self, network_id: str) -> NetworkState:
        with self._lock:
            state = self._networks.get(network_id)
            if state is None:
                state = NetworkState()
                self._networks[network_id] = state
                log.info("network created: %s", network_id)
            return state

    def _snapshot_networks(self) -> List[Tuple[str, NetworkState]]:
        with self._lock:
            return list(self._networks.items())

    def _retire(self, network_id: str, state: NetworkState) -> None:
        # Caller holds state.lock.
        state.retired = True
        with self._lock:
            if self._networks.get(network_id) is state:
                del self._networks[network_id]
        log.info("network reclaimed: %s", network_id)


__all__ = ["Exchange", "NetworkRegistry", "NetworkState", "NetworkView", "SweepReport"]
