"""Waiting pool, compatibility rules, and pairing state transitions.

The engine is synchronous and performs no I/O. Every operation returns the list
of deliveries it produced; the caller serializes operations and sends the
deliveries once the state change is committed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from ..schemas.signaling import Preferences
from . import messages
from .delivery import DeliveryHandle
from .messages import Delivery, MessageKind
from .registry import ConnectionRegistry, DuplicateConnectionError

logger = logging.getLogger(__name__)

EMPTY_PREFERENCES = Preferences()


@dataclass(slots=True, frozen=True)
class WaitingEntry:
    connection_id: str
    preferences: Preferences


def is_compatible(a: WaitingEntry, b: WaitingEntry) -> bool:
    """Return True when both sides accept each other."""

    if a.connection_id == b.connection_id:
        return False

    prefs_a = a.preferences
    prefs_b = b.preferences

    if prefs_a.interest and prefs_b.interest and prefs_a.interest != prefs_b.interest:
        return False

    a_wants = prefs_a.wanted_gender
    b_wants = prefs_b.wanted_gender
    a_is_happy = a_wants is None or a_wants == prefs_b.gender
    b_is_happy = b_wants is None or b_wants == prefs_a.gender
    return a_is_happy and b_is_happy


class WaitingPool:
    """Insertion-ordered set of waiting entries keyed by connection id."""

    def __init__(self) -> None:
        self._entries: Dict[str, WaitingEntry] = {}

    def append(self, entry: WaitingEntry) -> None:
        self._entries.pop(entry.connection_id, None)
        self._entries[entry.connection_id] = entry

    def discard(self, connection_id: str) -> Optional[WaitingEntry]:
        return self._entries.pop(connection_id, None)

    def ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WaitingEntry]:
        return iter(list(self._entries.values()))


class MatchmakingEngine:
    """Apply join, waiting, relay, skip, and leave operations to shared state."""

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        *,
        requeue_with_previous_preferences: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.pool = WaitingPool()
        self._requeue_with_previous = requeue_with_previous_preferences

    def join(self, connection_id: str, delivery: DeliveryHandle) -> List[Delivery]:
        """Register a connection and greet it with its id."""

        try:
            self.registry.register(connection_id, delivery)
        except DuplicateConnectionError:
            logger.warning("Rejecting duplicate registration of %s", connection_id)
            raise
        logger.info("Client %s connected", connection_id)
        return [Delivery(connection_id, messages.welcome(connection_id))]

    def enter_waiting(self, connection_id: str, preferences: Preferences) -> List[Delivery]:
        connection = self.registry.lookup(connection_id)
        if connection is None:
            logger.info("Ignoring waiting request from unknown client %s", connection_id)
            return []

        deliveries: List[Delivery] = []
        if connection.is_paired:
            # Asking for a new partner while paired releases the current one.
            deliveries.extend(self._unpair(connection_id, messages.partner_skipped(connection_id)))

        connection.preferences = preferences
        self.pool.discard(connection_id)
        entrant = WaitingEntry(connection_id, preferences)

        candidate = self._take_first_compatible(entrant)
        if candidate is None:
            self.pool.append(entrant)
            logger.info("Client %s added to waiting list. Waiting: %d", connection_id, len(self.pool))
            return deliveries

        self.registry.set_partner(candidate.connection_id, connection_id)
        self.registry.set_partner(connection_id, candidate.connection_id)
        logger.info(
            "Paired %s (%s) with %s (%s)",
            connection_id,
            preferences.gender or "-",
            candidate.connection_id,
            candidate.preferences.gender or "-",
        )
        deliveries.append(
            Delivery(candidate.connection_id, messages.paired(connection_id, is_initiator=True))
        )
        deliveries.append(
            Delivery(connection_id, messages.paired(candidate.connection_id, is_initiator=False))
        )
        return deliveries

    def relay(self, from_id: str, to_id: str, kind: MessageKind, body: Dict[str, Any]) -> List[Delivery]:
        """Forward an opaque payload; unknown recipients are dropped without error."""

        if to_id not in self.registry:
            logger.info("Dropping %s from %s: recipient %s is not connected", kind.value, from_id, to_id)
            return []
        return [Delivery(to_id, messages.relayed(kind, from_id, body))]

    def skip(self, connection_id: str) -> List[Delivery]:
        connection = self.registry.lookup(connection_id)
        if connection is None:
            logger.info("Ignoring skip from unknown client %s", connection_id)
            return []

        deliveries: List[Delivery] = []
        if connection.is_paired:
            logger.info("Client %s skipped %s", connection_id, connection.partner_id)
            deliveries.extend(self._unpair(connection_id, messages.partner_skipped(connection_id)))

        self.pool.discard(connection_id)
        deliveries.extend(self.enter_waiting(connection_id, self._requeue_preferences(connection.preferences)))
        return deliveries

    def leave(self, connection_id: str) -> List[Delivery]:
        connection = self.registry.lookup(connection_id)
        self.registry.remove(connection_id)
        self.pool.discard(connection_id)
        if connection is None:
            return []

        logger.info("Client %s disconnected", connection_id)
        partner_id = connection.partner_id
        if partner_id is None:
            return []

        partner = self.registry.lookup(partner_id)
        if partner is None:
            return []

        self.registry.clear_partner(partner_id)
        deliveries = [Delivery(partner_id, messages.disconnected(connection_id))]
        if not partner.delivery.is_open():
            return deliveries
        deliveries.extend(self.enter_waiting(partner_id, self._requeue_preferences(partner.preferences)))
        return deliveries

    def sweep(self) -> int:
        """Drop waiting entries whose connection is no longer registered."""

        stale = [entry.connection_id for entry in self.pool if entry.connection_id not in self.registry]
        for connection_id in stale:
            self.pool.discard(connection_id)
        if stale:
            logger.info("Cleaned up %d stale users from waiting list.", len(stale))
        return len(stale)

    def pair_count(self) -> int:
        return sum(1 for connection in self.registry if connection.is_paired) // 2

    def _take_first_compatible(self, entrant: WaitingEntry) -> Optional[WaitingEntry]:
        """Remove and return the earliest compatible live entry, dropping stale ones on the way."""

        for entry in self.pool:
            candidate = self.registry.lookup(entry.connection_id)
            if candidate is None or candidate.is_paired or not candidate.delivery.is_open():
                logger.info("Stale partner %s found in waiting list; discarding", entry.connection_id)
                self.pool.discard(entry.connection_id)
                continue
            if is_compatible(entrant, entry):
                self.pool.discard(entry.connection_id)
                return entry
        return None

    def _unpair(self, connection_id: str, notice: messages.SignalMessage) -> List[Delivery]:
        connection = self.registry.lookup(connection_id)
        if connection is None or connection.partner_id is None:
            return []

        partner_id = connection.partner_id
        self.registry.clear_partner(connection_id)
        partner = self.registry.lookup(partner_id)
        if partner is None or partner.partner_id != connection_id:
            return []
        self.registry.clear_partner(partner_id)
        return [Delivery(partner_id, notice)]

    def _requeue_preferences(self, previous: Optional[Preferences]) -> Preferences:
        if self._requeue_with_previous and previous is not None:
            return previous
        return EMPTY_PREFERENCES
