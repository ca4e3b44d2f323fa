"""In-memory registry of live signaling connections."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from ..schemas.signaling import Preferences
from .delivery import DeliveryHandle


class DuplicateConnectionError(ValueError):
    """Raised when a connection id is registered twice."""


@dataclass(slots=True)
class Connection:
    """State held for one client session."""

    connection_id: str
    delivery: DeliveryHandle
    preferences: Optional[Preferences] = None
    partner_id: Optional[str] = None

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None


class ConnectionRegistry:
    """Bookkeeping for known connections; pairing policy lives in the engine."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str, delivery: DeliveryHandle) -> Connection:
        if connection_id in self._connections:
            raise DuplicateConnectionError(f"Connection {connection_id} is already registered")
        connection = Connection(connection_id=connection_id, delivery=delivery)
        self._connections[connection_id] = connection
        return connection

    def lookup(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def remove(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)

    def set_partner(self, connection_id: str, partner_id: str) -> None:
        """Point one side at its partner. The caller links the other side."""

        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.partner_id = partner_id

    def clear_partner(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.partner_id = None

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
