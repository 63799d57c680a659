from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from pathlib import Path

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from chatcraft.config import (
    ConfigError,
    Tuning,
    env_bool,
    load_config,
    load_env_from_repo_root,
    load_keys_file,
    load_prompt,
)
from chatcraft.db.models import ControlCommandIn, ControlMessageIn, ControlStopIn
from chatcraft.runtime import BotRunner, Fleet

load_env_from_repo_root()

LOGGER = logging.getLogger("chatcraft.main")


class WsHub:
    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

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
            except (RuntimeError, WebSocketDisconnect):
                stale.append(ws)
        if stale:
            async with self._lock:
                for ws in stale:
                    self._clients.discard(ws)

    def publish(self, message: dict) -> None:
        """Schedule a broadcast from synchronous code running on the event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.broadcast(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


CONFIG_PATH = os.getenv("CHATCRAFT_CONFIG", "config.yml")
KEYS_PATH = os.getenv("CHATCRAFT_KEYS", "keys.json")

app = FastAPI(title="Chatcraft Agent Server", version="0.1.0")
hub = WsHub()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def conversation_listener(agent: str, message: dict[str, str]) -> None:
    hub.publish({"type": "conversation", "agent": agent, "payload": message})


def build_fleet() -> Fleet:
    config = load_config(CONFIG_PATH)
    prompt_path = Path(config.prompt_file)
    if not prompt_path.is_absolute():
        prompt_path = Path(CONFIG_PATH).resolve().parent / prompt_path
    prompt = load_prompt(prompt_path)
    keys = load_keys_file(KEYS_PATH)
    return Fleet.from_config(config, prompt, Tuning.from_env(), keys, listener=conversation_listener)


def get_fleet() -> Fleet:
    fleet = getattr(app.state, "fleet", None)
    if fleet is None:
        raise HTTPException(status_code=503, detail="agents not loaded")
    return fleet


def get_runner(name: str) -> BotRunner:
    runner = get_fleet().get(name)
    if runner is None:
        raise HTTPException(status_code=404, detail="agent not found")
    return runner


@app.on_event("startup")
async def startup() -> None:
    if getattr(app.state, "fleet", None) is None:
        try:
            app.state.fleet = build_fleet()
        except ConfigError as exc:
            LOGGER.error("%s", exc)
            app.state.fleet = None
            return
    if env_bool("CHATCRAFT_CONNECT", True):
        app.state.connect_task = asyncio.create_task(app.state.fleet.start_all())


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "connect_task", None)
    if task:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    fleet = getattr(app.state, "fleet", None)
    if fleet is not None:
        await fleet.stop_all()


@app.get("/api/health")
async def health() -> dict:
    fleet = getattr(app.state, "fleet", None)
    return {"status": "ok", "agents": len(fleet.names()) if fleet else 0}


@app.get("/api/agents")
async def agents() -> list[dict]:
    return [
        {
            "name": runner.name,
            "provider": runner.config.provider,
            "model": runner.config.model,
            "connected": runner.connected,
            "chat_mode": runner.chat_mode,
        }
        for runner in get_fleet().runners()
    ]


@app.get("/api/agents/{name}")
async def agent(name: str) -> dict:
    return get_runner(name).status_payload()


@app.get("/api/agents/{name}/conversation")
async def conversation(name: str) -> list[dict]:
    return get_runner(name).conversation.messages()


@app.post("/api/control/message")
async def control_message(payload: ControlMessageIn) -> dict:
    runner = get_runner(payload.agent)
    outcome = await runner.converse(payload.sender, payload.text)
    return {"accepted": True, "outcome": outcome.to_payload()}


@app.post("/api/control/command")
async def control_command(payload: ControlCommandIn) -> dict:
    runner = get_runner(payload.agent)
    commands = runner.dispatcher.dispatch_text(payload.text, payload.sender)
    if not commands:
        raise HTTPException(status_code=400, detail="no commands found in text")
    return {"accepted": True, "commands": [command.text() for command in commands]}


@app.post("/api/control/stop")
async def control_stop(payload: ControlStopIn) -> dict:
    runner = get_runner(payload.agent)
    aborted = runner.dispatcher.abort()
    runner.world.stop_moving()
    stopped = runner.session.cancel_continuous() + aborted
    await hub.broadcast({"type": "session", "agent": runner.name, "payload": runner.session.to_payload()})
    return {"accepted": True, "stopped": stopped}


@app.websocket("/ws/stream")
async def ws_stream(ws: WebSocket) -> None:
    await hub.add(ws)
    try:
        fleet = getattr(app.state, "fleet", None)
        for runner in fleet.runners() if fleet else []:
            await hub.send(ws, {"type": "session", "agent": runner.name, "payload": runner.session.to_payload()})

        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.remove(ws)


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=os.getenv("CHATCRAFT_HOST", "127.0.0.1"),
        port=int(os.getenv("CHATCRAFT_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
