import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Tuple

from fastapi.testclient import TestClient

from mnemosyne.api.server import RealtimeManager, RealtimeSession, create_app
from mnemosyne.api.state import GameSession
from mnemosyne.ticker import ManualTicker

FLOOR_PAYLOAD = {
    "event": "added",
    "region": {
        "id": "floor",
        "transform": {"position": [0.0, 0.0, -2.0], "rotation": [1.0, 0.0, 0.0, 0.0]},
        "width": 2.0,
        "depth": 2.0,
        "classification": "floor",
    },
}


def make_client() -> TestClient:
    session = GameSession(ticker=ManualTicker(), seed=5)
    return TestClient(create_app(session=session, ping_interval=0))


def test_healthz_and_initial_state() -> None:
    with make_client() as client:
        assert client.get("/healthz").json() == {"status": "ok", "profile": "default"}

        state = client.get("/api/state").json()["state"]
        assert state["round"]["phase"] == "settingUp"
        assert state["round"]["hud"]["title"] == "Setting Up..."
        assert state["render"]["entries"] == []
        assert state["surfaces"]["hasFoundSurfaces"] is False


def test_surface_updates() -> None:
    with make_client() as client:
        response = client.post("/surfaces", json=FLOOR_PAYLOAD)
        assert response.status_code == 200
        assert response.json()["changed"] is True

        wall = {
            "event": "added",
            "anchor": {"id": "wall", "width": 3.0, "height": 2.5, "classification": "wall"},
        }
        client.post("/surfaces", json=wall)
        ghost = {"event": "updated", "region": {"id": "ghost", "classification": "tableTop"}}
        assert client.post("/surfaces", json=ghost).json()["changed"] is False

        surfaces = client.get("/surfaces").json()
        assert surfaces["hasFoundSurfaces"] is True
        assert {region["id"] for region in surfaces["regions"]} == {"floor", "wall"}

        assert client.delete("/surfaces/wall").status_code == 200
        assert client.delete("/surfaces/wall").status_code == 404


def test_invalid_surface_rejected() -> None:
    with make_client() as client:
        bad = {"event": "added", "region": {"id": "floor", "width": -1.0}}
        assert client.post("/surfaces", json=bad).status_code == 422


def test_round_lifecycle_over_http() -> None:
    with make_client() as client:
        client.post("/surfaces", json=FLOOR_PAYLOAD)

        started = client.post("/round/start", json={"difficulty": "medium"}).json()
        assert started["phase"] == "memorizing"
        assert started["countdownValue"] == 10
        assert started["difficulty"] == "medium"
        assert started["hud"]["showCountdown"] is True

        feed = client.get("/render/feed").json()
        assert len(feed["entries"]) == 3
        assert all(entry["visible"] and not entry["tappable"] for entry in feed["entries"])

        tap = client.post("/round/taps", json={"objectId": feed["entries"][0]["id"]}).json()
        assert tap["result"] == "ignored"
        assert client.post("/round/taps", json={"objectId": "  "}).status_code == 422

        assert client.post("/profiles/practice").status_code == 409

        cancelled = client.post("/round/cancel").json()
        assert cancelled["phase"] == "settingUp"
        assert client.get("/render/feed").json()["entries"] == []

        assert client.post("/round/memorize/end").json()["accepted"] is False


def test_profile_activation() -> None:
    with make_client() as client:
        profiles = client.get("/profiles").json()
        assert {"default", "practice", "arcade"} <= set(profiles["profiles"])

        assert client.post("/profiles/missing").status_code == 404

        activated = client.post("/profiles/practice").json()
        assert activated["active"] == "practice"
        assert activated["settings"]["penalty"] == 0
        assert client.get("/healthz").json()["profile"] == "practice"


def test_realtime_init_and_ping() -> None:
    with make_client() as client:
        with client.websocket_connect("/realtime") as websocket:
            init: Dict[str, Any] = websocket.receive_json()
            assert init["type"] == "init"
            assert init["payload"]["round"]["phase"] == "settingUp"

            websocket.send_json({"type": "ping"})
            for _ in range(10):
                message = websocket.receive_json()
                if message["type"] == "pong":
                    break
            else:
                raise AssertionError("no pong received")


def test_realtime_tap_result() -> None:
    with make_client() as client:
        with client.websocket_connect("/realtime") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "tap", "objectId": "nothing"})
            for _ in range(10):
                message = websocket.receive_json()
                if message["type"] == "tap-result":
                    break
            else:
                raise AssertionError("no tap result received")
            assert message["result"] == "ignored"


def test_realtime_bad_difficulty_keeps_round_running() -> None:
    with make_client() as client:
        client.post("/surfaces", json=FLOOR_PAYLOAD)
        started = client.post("/round/start").json()

        with client.websocket_connect("/realtime") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "start-round", "difficulty": "bogus"})
            for _ in range(10):
                message = websocket.receive_json()
                if message["type"] == "error":
                    break
            else:
                raise AssertionError("no error reported")
            assert "bogus" in message["message"]

        state = client.get("/round").json()
        assert state["roundId"] == started["roundId"]
        assert state["phase"] == "memorizing"
        assert state["active"] is True
        assert len(client.get("/render/feed").json()["entries"]) == 3


def test_countdown_ticks_may_be_dropped_but_changes_may_not() -> None:
    manager = RealtimeManager(GameSession(ticker=ManualTicker(), seed=2))
    calls: List[Tuple[str, bool]] = []
    manager._schedule_broadcast = lambda message, *, allow_drop: calls.append((message["type"], allow_drop))
    snapshot = manager.game.machine.snapshot()

    manager._handle_round_snapshot(snapshot)
    manager._handle_round_snapshot(replace(snapshot, rev=snapshot.rev + 1, countdown_value=7))
    manager._handle_round_snapshot(replace(snapshot, rev=snapshot.rev + 2, score=10))
    manager._handle_round_snapshot(replace(snapshot, rev=snapshot.rev + 3, score=10, active=True))

    assert calls == [
        ("round-state", False),
        ("round-state", True),
        ("round-state", False),
        ("round-state", False),
    ]


def test_droppable_messages_give_way_to_a_full_queue() -> None:
    async def scenario() -> None:
        manager = RealtimeManager(GameSession(ticker=ManualTicker(), seed=2))
        session = RealtimeSession(manager, websocket=None, queue_size=1)

        await session.send({"type": "render-feed"})
        await session.send({"type": "round-state"}, allow_drop=True)

        assert session.send_queue.qsize() == 1
        assert session.send_queue.get_nowait()["type"] == "render-feed"

    asyncio.run(scenario())
