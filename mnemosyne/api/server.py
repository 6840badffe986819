"""
FastAPI control surface for the Mnemosyne round engine.

The host renderer polls or streams the render feed, forwards taps and pushes
plane-detection updates; a HUD can follow the round over ``/realtime``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Path as PathParam, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .. import EngineConfig
from ..config import ConfigError, ProfileNotFound, load_profiles
from ..round import RoundError, RoundSnapshot, TapResult
from . import schemas
from .state import GameSession

LOG = logging.getLogger(__name__)


class RealtimeSession:
    """Track per-connection state and run its send/receive loops."""

    def __init__(self, manager: "RealtimeManager", websocket: WebSocket, *, queue_size: int) -> None:
        self.manager = manager
        self.websocket = websocket
        self.session_id = uuid.uuid4().hex
        self.send_queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.last_pong = time.monotonic()
        self._stop_event = asyncio.Event()
        self._closing = False
        self.logger = LOG.getChild(f"ws.{self.session_id[:8]}")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        try:
            await self.websocket.accept()
        except Exception:  # pragma: no cover - handshake failure
            self.logger.exception("Failed to accept WebSocket connection")
            return

        await self.manager.register(self)
        try:
            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(self._recv_loop())
                task_group.create_task(self._send_loop())
                task_group.create_task(self._keepalive_loop())
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - loop failure
            self.logger.exception("Realtime session crashed")
        finally:
            await self.manager.unregister(self)
            await self.close(code=1000)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closing:
            return
        self._closing = True
        self._stop_event.set()
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code, reason=reason)

    async def send(self, payload: Dict[str, Any], *, allow_drop: bool = False) -> None:
        if self.is_stopped:
            return
        if allow_drop:
            try:
                self.send_queue.put_nowait(dict(payload))
            except asyncio.QueueFull:
                self.logger.debug("Dropping %s message due to backpressure", payload.get("type"))
            return
        await self.send_queue.put(dict(payload))

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    message = await self.websocket.receive_json()
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except Exception:  # pragma: no cover - safety net
                    self.logger.exception("Failed to receive message")
                    break

                if not isinstance(message, dict):
                    continue
                msg_type = str(message.get("type") or "").lower()
                if msg_type == "pong":
                    self.last_pong = time.monotonic()
                    continue
                if msg_type == "ping":
                    await self.send({"type": "pong", "ts": time.time()})
                    continue

                try:
                    await self.manager.handle_message(self, message)
                except asyncio.CancelledError:
                    raise
                except Exception:  # pragma: no cover - guard rails
                    self.logger.exception("Unhandled error while processing message")
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    payload = await asyncio.wait_for(self.send_queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self.websocket.send_json(payload)
                except asyncio.CancelledError:
                    raise
                except (WebSocketDisconnect, RuntimeError) as exc:
                    self.logger.debug("Send failed, closing session: %s", exc)
                    break
                finally:
                    self.send_queue.task_done()
        finally:
            self._stop_event.set()

    async def _keepalive_loop(self) -> None:
        if self.manager.ping_interval <= 0:
            return
        while not self.is_stopped:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.manager.ping_interval)
            except asyncio.TimeoutError:
                pass
            if self.is_stopped:
                break
            await self.send({"type": "ping", "ts": time.time()})
            if (time.monotonic() - self.last_pong) > self.manager.pong_timeout:
                self.logger.warning("Ping timeout; closing realtime session")
                await self.close(code=1011, reason="ping timeout")
                break


class RealtimeManager:
    """Fan round state and render feed changes out to WebSocket clients."""

    def __init__(
        self,
        session: GameSession,
        *,
        queue_size: int = 256,
        ping_interval: float = 30.0,
        pong_timeout: float = 60.0,
    ) -> None:
        self.game = session
        self.queue_size = max(1, int(queue_size))
        self.ping_interval = max(0.0, float(ping_interval))
        self.pong_timeout = max(self.ping_interval, float(pong_timeout))

        self._sessions: Dict[str, RealtimeSession] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._round_subscription: Optional[int] = None
        self._feed_subscription: Optional[int] = None
        self._last_round_key: Optional[tuple] = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._round_subscription = self.game.machine.subscribe(self._handle_round_snapshot)
        self._feed_subscription = self.game.bridge.subscribe(self._handle_feed)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._round_subscription is not None:
            self.game.machine.unsubscribe(self._round_subscription)
            self._round_subscription = None
        if self._feed_subscription is not None:
            self.game.bridge.unsubscribe(self._feed_subscription)
            self._feed_subscription = None
        self._last_round_key = None
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await session.close(code=1001, reason="server shutdown")
        self._loop = None

    def _handle_round_snapshot(self, snapshot: RoundSnapshot) -> None:
        # Countdown-only updates are superseded by the next tick, so they may be
        # dropped under backpressure. Anything else must reach every client.
        key = (
            snapshot.round_id,
            snapshot.phase,
            snapshot.active,
            snapshot.score,
            snapshot.correct_selections,
            snapshot.incorrect_selections,
            snapshot.total_targets,
        )
        tick_only = key == self._last_round_key
        self._last_round_key = key
        self._schedule_broadcast(
            {"type": "round-state", "payload": self.game.round_state()}, allow_drop=tick_only
        )

    def _handle_feed(self, _entries) -> None:
        self._schedule_broadcast({"type": "render-feed", "payload": self.game.render_feed()}, allow_drop=False)

    def _schedule_broadcast(self, message: Dict[str, Any], *, allow_drop: bool) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or not self._running:
            return

        async def _broadcast() -> None:
            try:
                await self.broadcast(message, allow_drop=allow_drop)
            except Exception:  # pragma: no cover - send failure
                LOG.exception("Failed to broadcast %s.", message.get("type"))

        try:
            loop.call_soon_threadsafe(lambda: loop.create_task(_broadcast()))
        except RuntimeError:
            LOG.debug("Broadcast scheduling failed; loop is shutting down.", exc_info=True)

    async def run(self, websocket: WebSocket) -> None:
        session = RealtimeSession(self, websocket, queue_size=self.queue_size)
        await session.run()

    async def register(self, session: RealtimeSession) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session
        await session.send({"type": "init", "payload": self.game.snapshot()})
        LOG.info("Realtime client connected session=%s", session.session_id)

    async def unregister(self, session: RealtimeSession) -> None:
        async with self._lock:
            self._sessions.pop(session.session_id, None)
        LOG.info("Realtime client disconnected session=%s", session.session_id)

    async def broadcast(
        self,
        message: Dict[str, Any],
        *,
        allow_drop: bool = False,
    ) -> None:
        async with self._lock:
            targets = list(self._sessions.values())
        if not targets:
            return
        await asyncio.gather(
            *[target.send(message, allow_drop=allow_drop) for target in targets],
            return_exceptions=True,
        )

    async def handle_message(self, session: RealtimeSession, message: Dict[str, Any]) -> None:
        message_type = message.get("type")
        if not isinstance(message_type, str):
            return
        machine = self.game.machine

        if message_type == "tap":
            object_id = message.get("objectId") or message.get("id")
            result = machine.resolve_tap(str(object_id)) if object_id else TapResult.IGNORED
            await session.send({"type": "tap-result", "objectId": object_id, "result": result.value})
            return

        if message_type == "start-round":
            difficulty = message.get("difficulty")
            try:
                machine.start_round(difficulty or None)
            except ValueError:
                await session.send({"type": "error", "message": f"unknown difficulty {difficulty!r}"})
            return

        if message_type == "cancel-round":
            machine.cancel_round()
            return

        if message_type == "end-memorize":
            machine.end_memorize()
            return

        if message_type == "surface":
            try:
                update = schemas.SurfaceUpdateRequest.model_validate(message.get("payload") or {})
            except ValueError as exc:
                await session.send({"type": "error", "message": str(exc)})
                return
            if self.game.surfaces.apply(update.event, update.region.to_region()):
                await self.broadcast({"type": "surfaces", "payload": self.game.surfaces_state()})
            return

        session.logger.debug("Ignoring unknown message type %s", message_type)


def create_app(
    *,
    session: Optional[GameSession] = None,
    config: Optional[EngineConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
    ping_interval: float = 30.0,
) -> FastAPI:
    if session is None:
        engine_config = config or EngineConfig()
        session = GameSession(settings=engine_config.round_settings(), active_profile=engine_config.profile)
    game = session

    realtime = RealtimeManager(game, ping_interval=ping_interval)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        await realtime.start()
        try:
            if lifespan is not None:
                async with lifespan(app):
                    yield
            else:
                yield
        finally:
            game.shutdown()
            await realtime.stop()

    app = FastAPI(title="Mnemosyne Engine API", lifespan=app_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.game = game

    @app.websocket("/realtime")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await realtime.run(websocket)

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "profile": game.active_profile}

    @app.get("/profiles")
    async def list_profiles() -> dict:
        try:
            profiles = load_profiles()
        except ConfigError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"profiles": profiles, "active": game.active_profile}

    @app.post("/profiles/{name}")
    async def activate_profile(name: str = PathParam(..., min_length=1)) -> dict:
        try:
            game.apply_profile(name)
        except ProfileNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ConfigError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except RoundError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"active": game.active_profile, "settings": game.settings.to_dict()}

    @app.get("/api/state")
    async def get_full_state() -> dict:
        return {"state": game.snapshot()}

    @app.get("/round")
    async def get_round() -> dict:
        return game.round_state()

    @app.post("/round/start")
    async def start_round(payload: Optional[schemas.StartRoundRequest] = None) -> dict:
        difficulty = payload.difficulty if payload is not None else None
        game.machine.start_round(difficulty)
        return game.round_state()

    @app.post("/round/cancel")
    async def cancel_round() -> dict:
        game.machine.cancel_round()
        return game.round_state()

    @app.post("/round/memorize/end")
    async def end_memorize() -> dict:
        accepted = game.machine.end_memorize()
        return {"accepted": accepted, "round": game.round_state()}

    @app.post("/round/taps")
    async def submit_tap(payload: schemas.TapRequest) -> dict:
        result = game.bridge.tap(payload.object_id)
        return {"result": result.value, "round": game.round_state()}

    @app.get("/render/feed")
    async def get_render_feed() -> dict:
        return game.render_feed()

    @app.get("/surfaces")
    async def list_surfaces() -> dict:
        return game.surfaces_state()

    @app.post("/surfaces")
    async def update_surface(payload: schemas.SurfaceUpdateRequest) -> dict:
        try:
            region = payload.region.to_region()
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        changed = game.surfaces.apply(payload.event, region)
        if changed:
            await realtime.broadcast({"type": "surfaces", "payload": game.surfaces_state()})
        return {"changed": changed, **game.surfaces_state()}

    @app.delete("/surfaces/{region_id}")
    async def remove_surface(region_id: str = PathParam(..., min_length=1)) -> dict:
        if not game.surfaces.remove(region_id):
            raise HTTPException(status_code=404, detail=f"Unknown surface '{region_id}'")
        await realtime.broadcast({"type": "surfaces", "payload": game.surfaces_state()})
        return game.surfaces_state()

    return app


__all__ = ["create_app", "RealtimeManager", "RealtimeSession"]
