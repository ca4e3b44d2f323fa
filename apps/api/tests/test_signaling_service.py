"""Tests for signaling manager and websocket endpoint."""
from __future__ import annotations

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from relay.main import app
from relay.routers import signaling as signaling_router
from relay.schemas.signaling import Preferences
from relay.services.matchmaking import MatchmakingEngine
from relay.services.messages import MessageKind
from relay.services.signaling import SignalingManager, manager as signaling_manager


class DummyConnection:
    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.open = True

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def is_open(self) -> bool:
        return self.open


class BrokenConnection(DummyConnection):
    async def send(self, message: dict) -> None:
        raise RuntimeError("socket closed")


@pytest.fixture(autouse=True)
def fresh_app_state(monkeypatch):
    monkeypatch.setattr(signaling_manager, "engine", MatchmakingEngine())
    monkeypatch.setattr(signaling_manager, "_lock", asyncio.Lock())


@pytest.mark.asyncio
async def test_signaling_manager_pairs_relays_and_leaves():
    manager = SignalingManager(MatchmakingEngine())
    conn_a = DummyConnection()
    conn_b = DummyConnection()

    id_a = await manager.join(conn_a)
    id_b = await manager.join(conn_b)
    assert conn_a.messages == [{"type": "welcome", "id": id_a}]
    assert conn_b.messages == [{"type": "welcome", "id": id_b}]

    await manager.enter_waiting(id_a, Preferences(gender="F", partnerPreference="same"))
    assert len(conn_a.messages) == 1

    await manager.enter_waiting(id_b, Preferences(gender="F"))
    assert conn_a.messages[-1] == {"type": "paired", "partnerId": id_b, "isInitiator": True}
    assert conn_b.messages[-1] == {"type": "paired", "partnerId": id_a, "isInitiator": False}
    assert manager.stats() == {"connections": 2, "waiting": 0, "pairs": 1}

    await manager.relay(id_a, id_b, MessageKind.OFFER, {"sdp": "hello"})
    assert conn_b.messages[-1] == {"type": "offer", "sdp": "hello", "from": id_a}

    await manager.leave(id_a)
    assert conn_b.messages[-1] == {"type": "disconnected", "from": id_a}
    assert manager.stats() == {"connections": 1, "waiting": 1, "pairs": 0}


@pytest.mark.asyncio
async def test_relay_to_missing_client_sends_nothing():
    manager = SignalingManager(MatchmakingEngine())
    conn_a = DummyConnection()
    id_a = await manager.join(conn_a)

    await manager.relay(id_a, "ghost", MessageKind.MESSAGE, {"text": "hi"})

    assert conn_a.messages == [{"type": "welcome", "id": id_a}]


@pytest.mark.asyncio
async def test_failed_delivery_does_not_break_the_operation():
    manager = SignalingManager(MatchmakingEngine())
    broken = BrokenConnection()
    healthy = DummyConnection()
    id_broken = await manager.join(broken)
    id_healthy = await manager.join(healthy)

    await manager.enter_waiting(id_broken, Preferences())
    await manager.enter_waiting(id_healthy, Preferences())

    assert healthy.messages[-1]["type"] == "paired"
    assert manager.engine.registry.lookup(id_broken).partner_id == id_healthy


@pytest.mark.asyncio
async def test_sweep_evicts_closed_connections_and_notifies_partner():
    manager = SignalingManager(MatchmakingEngine())
    conn_a = DummyConnection()
    conn_b = DummyConnection()
    id_a = await manager.join(conn_a)
    id_b = await manager.join(conn_b)
    await manager.enter_waiting(id_a, Preferences())
    await manager.enter_waiting(id_b, Preferences())

    conn_a.open = False
    removed = await manager.sweep()

    assert removed == 1
    assert manager.engine.registry.lookup(id_a) is None
    assert conn_b.messages[-1] == {"type": "disconnected", "from": id_a}
    assert manager.engine.pool.ids() == [id_b]


@pytest.mark.asyncio
async def test_sweep_of_two_closed_partners_leaves_waiting_client_alone():
    manager = SignalingManager(MatchmakingEngine())
    conn_a = DummyConnection()
    conn_b = DummyConnection()
    conn_c = DummyConnection()
    id_a = await manager.join(conn_a)
    id_b = await manager.join(conn_b)
    await manager.enter_waiting(id_a, Preferences())
    await manager.enter_waiting(id_b, Preferences())
    id_c = await manager.join(conn_c)
    await manager.enter_waiting(id_c, Preferences())

    conn_a.open = False
    conn_b.open = False
    removed = await manager.sweep()

    assert removed == 2
    assert [message["type"] for message in conn_c.messages] == ["welcome"]
    assert manager.engine.registry.lookup(id_c).partner_id is None
    assert manager.engine.pool.ids() == [id_c]
    assert manager.stats() == {"connections": 1, "waiting": 1, "pairs": 0}


@pytest.mark.asyncio
async def test_sweep_drops_stale_waiting_entries():
    manager = SignalingManager(MatchmakingEngine())
    id_a = await manager.join(DummyConnection())
    await manager.enter_waiting(id_a, Preferences())
    manager.engine.registry.remove(id_a)

    assert await manager.sweep() == 1
    assert len(manager.engine.pool) == 0


@pytest.mark.asyncio
async def test_concurrent_entrants_never_share_a_candidate():
    manager = SignalingManager(MatchmakingEngine())
    waiting = await manager.join(DummyConnection())
    await manager.enter_waiting(waiting, Preferences())
    entrants = [await manager.join(DummyConnection()) for _ in range(5)]

    await asyncio.gather(*(manager.enter_waiting(entrant, Preferences()) for entrant in entrants))

    partners = [
        connection.partner_id
        for connection in manager.engine.registry
        if connection.partner_id is not None
    ]
    assert len(partners) == len(set(partners)) == 6
    assert manager.stats()["pairs"] == 3


def _wait_for_waiting(client: TestClient, count: int) -> None:
    for _ in range(100):
        if client.get("/api/stats").json()["waiting"] == count:
            return
        time.sleep(0.01)
    raise AssertionError(f"expected {count} waiting clients")


def test_signaling_websocket_pairs_and_relays():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws_e2:
            id_e2 = ws_e2.receive_json()["id"]

            with client.websocket_connect("/ws") as ws_e1:
                welcome = ws_e1.receive_json()
                assert welcome["type"] == "welcome"
                id_e1 = welcome["id"]

                ws_e1.send_json(
                    {"type": "waiting", "payload": {"gender": "F", "partnerPreference": "same", "interest": ""}}
                )
                _wait_for_waiting(client, 1)

                ws_e2.send_json(
                    {"type": "waiting", "payload": {"gender": "F", "partnerPreference": "any", "interest": ""}}
                )
                assert ws_e1.receive_json() == {"type": "paired", "partnerId": id_e2, "isInitiator": True}
                assert ws_e2.receive_json() == {"type": "paired", "partnerId": id_e1, "isInitiator": False}

                ws_e1.send_text("not json")
                ws_e1.send_json({"to": id_e2, "sdp": "missing type"})
                ws_e1.send_json({"type": "offer", "to": id_e2, "sdp": "hello", "from": "spoofed"})

                forwarded = ws_e2.receive_json()
                assert forwarded == {"type": "offer", "sdp": "hello", "from": id_e1}

                ws_e1.send_json({"type": "leave"})
                notice = ws_e2.receive_json()
                assert notice == {"type": "disconnected", "from": id_e1}

            stats = client.get("/api/stats").json()
            assert stats == {"connections": 1, "waiting": 1, "pairs": 0}


def test_signaling_websocket_skip_notifies_partner():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
            id_a = ws_a.receive_json()["id"]
            id_b = ws_b.receive_json()["id"]

            ws_a.send_json({"type": "waiting", "payload": {}})
            _wait_for_waiting(client, 1)
            ws_b.send_json({"type": "waiting", "payload": {}})
            assert ws_a.receive_json()["partnerId"] == id_b
            assert ws_b.receive_json()["partnerId"] == id_a

            ws_b.send_json({"type": "skip"})
            assert ws_a.receive_json() == {"type": "partnerSkipped", "from": id_b}
            _wait_for_waiting(client, 1)


def test_signaling_websocket_sends_keepalive_pings(monkeypatch):
    monkeypatch.setattr(signaling_router.settings, "keepalive_interval_seconds", 0.01)

    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            connection_id = ws.receive_json()["id"]
            assert ws.receive_json() == {"type": "ping"}
            ws.send_json({"type": "pong"})
            ws.send_json({"type": "leave"})

        assert client.get("/api/stats").json()["connections"] == 0
        assert signaling_manager.delivery_for(connection_id) is None
