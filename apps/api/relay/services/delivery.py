"""Transport-side delivery handles for push sockets and polled queues."""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

SendCallable = Callable[[dict], Awaitable[None]]


class DeliveryHandle(Protocol):
    """Capability the core uses to reach one connection."""

    async def send(self, message: dict[str, Any]) -> None: ...

    def is_open(self) -> bool: ...


@dataclass(slots=True)
class PushDelivery:
    """Deliver immediately through a push channel such as a websocket."""

    send_json: SendCallable
    connected: Callable[[], bool] = lambda: True

    async def send(self, message: dict[str, Any]) -> None:
        await self.send_json(message)

    def is_open(self) -> bool:
        return self.connected()


class PollQueue:
    """Per-client outbound queue drained by the next poll request.

    The queue counts as closed once the client has not polled for ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: float = 120.0, max_messages: int = 500) -> None:
        self._ttl = ttl_seconds
        self._messages: deque[dict[str, Any]] = deque(maxlen=max_messages)
        self.last_seen = time.time()

    async def send(self, message: dict[str, Any]) -> None:
        self._messages.append(message)

    def is_open(self) -> bool:
        return time.time() - self.last_seen <= self._ttl

    def touch(self) -> None:
        self.last_seen = time.time()

    def drain(self) -> list[dict[str, Any]]:
        messages = list(self._messages)
        self._messages.clear()
        return messages

    def __len__(self) -> int:
        return len(self._messages)
