"""In-memory WebRTC signaling manager."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from ..core.config import settings
from ..schemas.signaling import Preferences
from .delivery import DeliveryHandle
from .matchmaking import MatchmakingEngine
from .messages import Delivery, MessageKind
from .operations import EnterWaiting, Leave, Operation, Relay, Skip

logger = logging.getLogger(__name__)

_Outbound = Tuple[str, DeliveryHandle, dict]


class SignalingManager:
    """Serialize matchmaking operations and fan deliveries out to transports.

    State changes run under a single lock; messages are sent after it is released.
    """

    def __init__(self, engine: Optional[MatchmakingEngine] = None) -> None:
        self.engine = engine or MatchmakingEngine(
            requeue_with_previous_preferences=settings.requeue_with_previous_preferences
        )
        self._lock = asyncio.Lock()

    async def join(self, delivery: DeliveryHandle, connection_id: Optional[str] = None) -> str:
        """Register a connection, send its welcome notice, and return its id."""

        connection_id = connection_id or str(uuid4())
        async with self._lock:
            outbound = self._resolve(self.engine.join(connection_id, delivery))
        await self._send(outbound)
        return connection_id

    async def enter_waiting(self, connection_id: str, preferences: Preferences) -> None:
        await self.apply(connection_id, EnterWaiting(preferences))

    async def relay(self, from_id: str, to_id: str, kind: MessageKind, body: dict[str, Any]) -> None:
        await self.apply(from_id, Relay(kind=kind, to=to_id, body=body))

    async def skip(self, connection_id: str) -> None:
        await self.apply(connection_id, Skip())

    async def leave(self, connection_id: str) -> None:
        await self.apply(connection_id, Leave())

    async def apply(self, connection_id: str, operation: Operation) -> None:
        """Apply one inbound operation on behalf of ``connection_id``."""

        async with self._lock:
            if isinstance(operation, EnterWaiting):
                deliveries = self.engine.enter_waiting(connection_id, operation.preferences)
            elif isinstance(operation, Relay):
                deliveries = self.engine.relay(connection_id, operation.to, operation.kind, operation.body)
            elif isinstance(operation, Skip):
                deliveries = self.engine.skip(connection_id)
            elif isinstance(operation, Leave):
                deliveries = self.engine.leave(connection_id)
            else:
                raise TypeError(f"Unsupported operation: {operation!r}")
            outbound = self._resolve(deliveries)
        await self._send(outbound)

    async def sweep(self) -> int:
        """Evict connections whose transport has gone away and drop stale waiting entries."""

        async with self._lock:
            closed = [
                connection.connection_id
                for connection in self.engine.registry
                if not connection.delivery.is_open()
            ]
            deliveries: List[Delivery] = []
            for connection_id in closed:
                logger.info("Evicting closed client %s", connection_id)
                deliveries.extend(self.engine.leave(connection_id))
            removed = self.engine.sweep()
            outbound = self._resolve(deliveries)
        await self._send(outbound)
        return removed + len(closed)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever at a fixed interval; cancelled on shutdown."""

        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception as exc:  # noqa: BLE001 - keep the sweeper alive
                logger.exception("Stale sweep failed: %s", exc)

    def delivery_for(self, connection_id: str) -> Optional[DeliveryHandle]:
        connection = self.engine.registry.lookup(connection_id)
        return connection.delivery if connection is not None else None

    def stats(self) -> dict[str, int]:
        return {
            "connections": len(self.engine.registry),
            "waiting": len(self.engine.pool),
            "pairs": self.engine.pair_count(),
        }

    def _resolve(self, deliveries: List[Delivery]) -> List[_Outbound]:
        outbound: List[_Outbound] = []
        for delivery in deliveries:
            connection = self.engine.registry.lookup(delivery.connection_id)
            if connection is None:
                logger.info(
                    "Client %s not found for %s message", delivery.connection_id, delivery.message.kind.value
                )
                continue
            outbound.append((delivery.connection_id, connection.delivery, delivery.message.to_wire()))
        return outbound

    async def _send(self, outbound: List[_Outbound]) -> None:
        if not outbound:
            return

        # Messages for one connection keep their order; connections are served concurrently.
        queues: Dict[str, Tuple[DeliveryHandle, List[dict]]] = {}
        for connection_id, handle, message in outbound:
            queues.setdefault(connection_id, (handle, []))[1].append(message)

        async def _send_in_order(handle: DeliveryHandle, messages: List[dict]) -> None:
            for message in messages:
                await handle.send(message)

        results = await asyncio.gather(
            *(_send_in_order(handle, messages) for handle, messages in queues.values()),
            return_exceptions=True,
        )
        for connection_id, result in zip(queues, results):
            if isinstance(result, Exception):
                logger.warning("Failed to deliver to %s: %s", connection_id, result)


manager = SignalingManager()
