"""Normalize inbound client messages into matchmaking operations."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import ValidationError

from ..schemas.signaling import Preferences
from .messages import RELAY_KINDS, MessageKind

WAITING = "waiting"
SKIP = "skip"
LEAVE = "leave"
PONG = "pong"


class MalformedOperationError(ValueError):
    """Raised when an inbound message cannot be turned into an operation."""


@dataclass(slots=True, frozen=True)
class EnterWaiting:
    preferences: Preferences


@dataclass(slots=True, frozen=True)
class Relay:
    kind: MessageKind
    to: str
    body: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Skip:
    pass


@dataclass(slots=True, frozen=True)
class Leave:
    pass


Operation = Union[EnterWaiting, Relay, Skip, Leave]


def parse_operation(data: object) -> Operation | None:
    """Return the operation described by ``data``, or ``None`` for keepalive replies."""

    if not isinstance(data, dict):
        raise MalformedOperationError("Message must be a JSON object")

    message_type = data.get("type")
    if not message_type or not isinstance(message_type, str):
        raise MalformedOperationError("Missing message type")

    if message_type == PONG:
        return None
    if message_type == WAITING:
        return EnterWaiting(preferences=_parse_preferences(data.get("payload")))
    if message_type == SKIP:
        return Skip()
    if message_type == LEAVE:
        return Leave()

    try:
        kind = MessageKind(message_type)
    except ValueError as exc:
        raise MalformedOperationError(f"Unknown message type: {message_type}") from exc
    if kind not in RELAY_KINDS:
        raise MalformedOperationError(f"Message type {message_type} cannot be relayed")

    recipient = data.get("to")
    if not recipient or not isinstance(recipient, str):
        raise MalformedOperationError(f"Relay of {message_type} is missing a recipient")

    body = {key: value for key, value in data.items() if key not in {"type", "to", "from"}}
    return Relay(kind=kind, to=recipient, body=body)


def _parse_preferences(payload: object) -> Preferences:
    if payload is None:
        return Preferences()
    if not isinstance(payload, dict):
        raise MalformedOperationError("Waiting payload must be an object")
    try:
        return Preferences.model_validate(payload)
    except ValidationError as exc:
        raise MalformedOperationError(f"Invalid preferences: {exc.error_count()} error(s)") from exc
