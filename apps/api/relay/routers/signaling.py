"""Push signaling over a websocket."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..core.config import settings
from ..services import messages
from ..services.delivery import PushDelivery
from ..services.operations import Leave, MalformedOperationError, parse_operation
from ..services.registry import DuplicateConnectionError
from ..services.signaling import manager as signaling_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_connected(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def _keepalive(websocket: WebSocket, interval_seconds: float) -> None:
    """Ping the client periodically so idle intermediaries keep the socket open."""

    while True:
        await asyncio.sleep(interval_seconds)
        if not _is_connected(websocket):
            return
        try:
            await websocket.send_json(messages.PING.to_wire())
        except (RuntimeError, WebSocketDisconnect) as exc:
            logger.debug("Keepalive stopped: %s", exc)
            return


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Match the client with a stranger and relay its signaling messages."""

    await websocket.accept()
    delivery = PushDelivery(send_json=websocket.send_json, connected=lambda: _is_connected(websocket))
    try:
        connection_id = await signaling_manager.join(delivery)
    except DuplicateConnectionError:
        await websocket.close(code=1011)
        return
    keepalive = asyncio.create_task(_keepalive(websocket, settings.keepalive_interval_seconds))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            raw = frame.get("text")
            if raw is None:
                raw = (frame.get("bytes") or b"").decode("utf-8", errors="replace")

            try:
                operation = parse_operation(json.loads(raw))
            except (json.JSONDecodeError, MalformedOperationError) as exc:
                logger.warning("Ignoring malformed message from %s: %s", connection_id, exc)
                continue
            if operation is None:
                continue

            try:
                await signaling_manager.apply(connection_id, operation)
            except Exception as exc:  # noqa: BLE001 - one bad message must not drop the session
                logger.exception("Error processing message from %s: %s", connection_id, exc)
                continue

            if isinstance(operation, Leave):
                await websocket.close()
                break
    except WebSocketDisconnect:
        pass
    finally:
        keepalive.cancel()
        await asyncio.shield(signaling_manager.leave(connection_id))
        with contextlib.suppress(asyncio.CancelledError):
            await keepalive
