"""Outbound message kinds and delivery instructions."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class MessageKind(str, enum.Enum):
    WELCOME = "welcome"
    PAIRED = "paired"
    PARTNER_SKIPPED = "partnerSkipped"
    DISCONNECTED = "disconnected"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "iceCandidate"
    MESSAGE = "message"
    TOGGLE_VIDEO = "toggleVideo"
    TOGGLE_AUDIO = "toggleAudio"
    PING = "ping"


# Kinds a client may address to another connection.
RELAY_KINDS = frozenset(
    {
        MessageKind.OFFER,
        MessageKind.ANSWER,
        MessageKind.ICE_CANDIDATE,
        MessageKind.MESSAGE,
        MessageKind.TOGGLE_VIDEO,
        MessageKind.TOGGLE_AUDIO,
        MessageKind.DISCONNECTED,
    }
)


@dataclass(slots=True, frozen=True)
class SignalMessage:
    """A typed message with an opaque body, rendered to JSON by ``to_wire``."""

    kind: MessageKind
    body: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {**self.body, "type": self.kind.value}


@dataclass(slots=True, frozen=True)
class Delivery:
    """Instruction to hand ``message`` to the transport of ``connection_id``."""

    connection_id: str
    message: SignalMessage


def welcome(connection_id: str) -> SignalMessage:
    return SignalMessage(MessageKind.WELCOME, {"id": connection_id})


def paired(partner_id: str, *, is_initiator: bool) -> SignalMessage:
    return SignalMessage(MessageKind.PAIRED, {"partnerId": partner_id, "isInitiator": is_initiator})


def partner_skipped(from_id: str) -> SignalMessage:
    return SignalMessage(MessageKind.PARTNER_SKIPPED, {"from": from_id})


def disconnected(from_id: str) -> SignalMessage:
    return SignalMessage(MessageKind.DISCONNECTED, {"from": from_id})


def relayed(kind: MessageKind, from_id: str, body: dict[str, Any]) -> SignalMessage:
    """Stamp the sender on a relayed body, replacing any client-supplied ``from``."""

    return SignalMessage(kind, {**body, "from": from_id})


PING = SignalMessage(MessageKind.PING)
