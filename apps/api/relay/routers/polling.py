"""Request/response signaling for clients that cannot hold a websocket open."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from ..core.config import settings
from ..schemas.signaling import CleanupRequest, PollRequest, PollResponse
from ..services.delivery import PollQueue
from ..services.operations import MalformedOperationError, parse_operation
from ..services.signaling import manager as signaling_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _known_queue(client_id: object) -> PollQueue | None:
    if not client_id or not isinstance(client_id, str):
        return None
    delivery = signaling_manager.delivery_for(client_id)
    return delivery if isinstance(delivery, PollQueue) else None


@router.post("/poll", response_model=PollResponse)
async def poll(payload: PollRequest) -> PollResponse:
    """Apply an optional operation and return every message queued for the client."""

    queue = _known_queue(payload.client_id)
    if queue is None:
        queue = PollQueue(
            ttl_seconds=settings.poll_session_ttl_seconds,
            max_messages=settings.poll_queue_max_messages,
        )
        client_id = await signaling_manager.join(queue)
    else:
        client_id = payload.client_id
    queue.touch()

    if payload.type is not None:
        try:
            operation = parse_operation(payload.operation_fields())
            if operation is not None:
                await signaling_manager.apply(client_id, operation)
        except MalformedOperationError as exc:
            logger.warning("Ignoring malformed message from %s: %s", client_id, exc)
        except Exception as exc:  # noqa: BLE001 - queued messages are still returned
            logger.exception("Error processing message from %s: %s", client_id, exc)

    return PollResponse(messages=queue.drain())


@router.post("/poll/cleanup")
async def cleanup(payload: CleanupRequest | None = None) -> dict[str, str]:
    """Disconnect a polling client and notify its partner."""

    if payload is None or not payload.client_id:
        raise HTTPException(status_code=400, detail="clientId is required")

    await signaling_manager.leave(payload.client_id)
    return {"status": "ok"}
