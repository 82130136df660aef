from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from longwalk.models import AdvanceIn, ControlCrisisIn, ControlMatchIn, ControlRetireIn, ControlSpeedIn
from longwalk.sim.engine import SimulationEngine
from longwalk.sim.narrative import NarrativeEntry


def _load_env_from_repo_root() -> None:
    # server/longwalk/main.py -> repo root is 2 levels up from "server"
    env_path = Path(__file__).resolve().parents[2] / ".env"
    if not env_path.exists():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = value.strip()
        if value and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


_load_env_from_repo_root()

LOGGER = logging.getLogger("longwalk.main")
T = TypeVar("T")


class WsHub:
    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def add(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.add(ws)

    async def remove(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)

    async def send(self, ws: WebSocket, message: dict) -> None:
        await ws.send_text(json.dumps(message, ensure_ascii=False))

    async def broadcast(self, message: dict) -> None:
        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return

        serialized = json.dumps(message, ensure_ascii=False)
        stale: list[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_text(serialized)
            except Exception:
                stale.append(ws)
        if stale:
            async with self._lock:
                for ws in stale:
                    self._clients.discard(ws)


TICK_INTERVAL_SEC = float(os.getenv("TICK_INTERVAL_SEC", "1.0"))
TICK_LOOP_ENABLED = os.getenv("TICK_LOOP_ENABLED", "1").strip().lower() in {"1", "true", "yes", "on"}

app = FastAPI(title="Long Walk Simulation Server", version="0.1.0")
engine = SimulationEngine.from_env()
hub = WsHub()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _entries_payload(entries: list[NarrativeEntry]) -> list[dict]:
    return [entry.to_dict() for entry in entries]


async def _locked(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    # Every engine read and control call runs here, never while a tick is in progress.
    async with app.state.engine_lock:
        return fn(*args, **kwargs)


async def _publish(entries: list[NarrativeEntry]) -> None:
    for entry in entries:
        await hub.broadcast({"type": "narrative", "payload": entry.to_dict()})
    await hub.broadcast({"type": "state", "payload": await _locked(engine.snapshot)})


async def _advance(ticks: int) -> list[NarrativeEntry]:
    # Ticks run off the event loop so slow reasoning calls do not stall the API.
    async with app.state.engine_lock:
        return await asyncio.to_thread(engine.advance, ticks)


async def tick_loop() -> None:
    while True:
        await asyncio.sleep(max(0.1, TICK_INTERVAL_SEC) / max(float(getattr(app.state, "speed", 1.0)), 0.1))

        started_at = time.perf_counter()
        entries = await _advance(1)
        await _publish(entries)

        tick_ms = (time.perf_counter() - started_at) * 1000.0
        avg = getattr(app.state, "avg_tick_ms", 0.0)
        if avg <= 0.0:
            app.state.avg_tick_ms = tick_ms
        else:
            app.state.avg_tick_ms = (avg * 0.88) + (tick_ms * 0.12)
        app.state.last_tick_ms = tick_ms


@app.on_event("startup")
async def startup() -> None:
    app.state.engine_lock = asyncio.Lock()
    app.state.last_tick_ms = 0.0
    app.state.avg_tick_ms = 0.0
    app.state.speed = 1.0
    app.state.tick_task = asyncio.create_task(tick_loop()) if TICK_LOOP_ENABLED else None


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "tick_task", None)
    if task:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    engine.close()


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "tick": engine.tick, "reasoning_service": engine.client.enabled}


@app.get("/api/state")
async def state() -> dict:
    payload = await _locked(engine.snapshot)
    payload["runtime"] = {
        "speed": float(getattr(app.state, "speed", 1.0)),
        "last_tick_ms": round(float(getattr(app.state, "last_tick_ms", 0.0)), 3),
        "avg_tick_ms": round(float(getattr(app.state, "avg_tick_ms", 0.0)), 3),
    }
    return payload


@app.post("/api/advance")
async def advance(payload: AdvanceIn) -> dict:
    entries = await _advance(payload.ticks)
    await _publish(entries)
    return {"tick": engine.tick, "entries": _entries_payload(entries)}


@app.get("/api/route")
async def route() -> dict:
    return engine.state.graph.to_dict()


@app.get("/api/agents/{agent_id}")
async def agent(agent_id: str) -> dict:
    details = await _locked(engine.agent_details, agent_id)
    if not details:
        raise HTTPException(status_code=404, detail="agent not found")
    return details


@app.get("/api/agents/{agent_id}/knowledge")
async def agent_knowledge(
    agent_id: str,
    q: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=10, ge=1, le=100),
) -> list[dict]:
    try:
        items = await _locked(engine.recall, agent_id, q, limit)
    except KeyError:
        raise HTTPException(status_code=404, detail="agent not found") from None
    return [item.to_dict() for item in items]


@app.get("/api/narrative")
async def narrative(
    limit: int = Query(default=50, ge=1, le=500),
    agent_id: str | None = Query(default=None),
    since: int | None = Query(default=None, ge=0),
) -> list[dict]:
    if agent_id is not None and agent_id not in engine.state.agents:
        raise HTTPException(status_code=404, detail="agent not found")
    if since is not None:
        entries = await _locked(engine.entries_since, since, agent_id=agent_id)
        return _entries_payload(entries[-limit:])
    return _entries_payload(await _locked(engine.narrative, limit=limit, agent_id=agent_id))


@app.post("/api/control/match")
async def control_match(payload: ControlMatchIn) -> dict:
    try:
        await _locked(engine.match_pair, payload.a, payload.b)
    except KeyError:
        raise HTTPException(status_code=404, detail="agent not found") from None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    return {"accepted": True, "applies_at_tick": engine.tick}


@app.post("/api/control/crisis")
async def control_crisis(payload: ControlCrisisIn) -> dict:
    try:
        script = await _locked(
            engine.trigger_crisis,
            payload.kind,
            severity=payload.severity,
            quota=payload.quota,
            deadline_ticks=payload.deadline_ticks,
            location=payload.location,
            target_agent=payload.target_agent,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail="agent not found") from None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    return {"accepted": True, "kind": script.kind, "applies_at_tick": script.tick}


@app.post("/api/control/retire")
async def control_retire(payload: ControlRetireIn) -> dict:
    try:
        await _locked(engine.retire_agent, payload.agent_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="agent not found") from None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    return {"accepted": True, "agent_id": payload.agent_id, "applies_at_tick": engine.tick}


@app.post("/api/control/speed")
async def control_speed(payload: ControlSpeedIn) -> dict:
    app.state.speed = payload.speed
    return {"speed": app.state.speed}


@app.websocket("/ws/stream")
async def ws_stream(ws: WebSocket) -> None:
    await hub.add(ws)
    try:
        await hub.send(ws, {"type": "state", "payload": await _locked(engine.snapshot)})
        for entry in reversed(await _locked(engine.narrative, limit=10)):
            await hub.send(ws, {"type": "narrative", "payload": entry.to_dict()})

        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.remove(ws)
