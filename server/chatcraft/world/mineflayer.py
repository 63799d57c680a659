"""World connection backed by a mineflayer bot running under JSPyBridge.

Bridge calls block the calling thread until Node answers, so every call that
waits on the server runs through ``asyncio.to_thread``. Telemetry reads stay on
the loop thread; they are answered from the bot's local state. Events arrive on
the bridge's own thread and are handed to the loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from javascript import On, require

from chatcraft.agents.agent import Block, Entity, ItemStack, Recipe, Telemetry, Vec3
from chatcraft.world.connection import (
    Goal,
    GoalBlock,
    GoalNear,
    GoalXZ,
    WorldActionError,
    normalize_ingredients,
)

LOGGER = logging.getLogger("chatcraft.world.mineflayer")

BRIDGED_EVENTS = (
    "login",
    "spawn",
    "death",
    "end",
    "kicked",
    "error",
    "chat",
    "whisper",
    "entityHurt",
    "goal_reached",
    "path_update",
    "diggingCompleted",
)


def _js_message(exc: BaseException) -> str:
    for line in str(exc).splitlines():
        line = line.strip().strip("🌉").strip()
        if line and not line.startswith("at ") and "JavaScript Error" not in line:
            return line[:200]
    return exc.__class__.__name__


def _vec(js_pos: Any) -> Vec3:
    return Vec3(float(js_pos.x), float(js_pos.y), float(js_pos.z))


class MineflayerData:
    """Name/id lookups and recipes from ``minecraft-data`` for the bot's version."""

    def __init__(self, bot: Any, mc_data: Any) -> None:
        self.bot = bot
        self.mc_data = mc_data

    def item_id(self, name: str) -> int | None:
        item = self.mc_data.itemsByName[name] if name else None
        return int(item.id) if item else None

    def block_id(self, name: str) -> int | None:
        block = self.mc_data.blocksByName[name] if name else None
        return int(block.id) if block else None

    def item_name(self, type_id: int) -> str | None:
        item = self.mc_data.items[type_id]
        return str(item.name) if item else None

    def food_points(self, name: str) -> float | None:
        food = self.mc_data.foodsByName[name]
        return float(food.foodPoints) if food else None

    def recipes_for(self, item_id: int) -> list[Recipe]:
        # recipesAll ignores the inventory; table recipes are included when a table is allowed
        found = self.bot.recipesAll(item_id, None, True)
        recipes = []
        for handle in found or []:
            consumed = [{"id": delta.id, "count": delta.count} for delta in handle.delta if delta.count < 0]
            recipes.append(
                Recipe(
                    result_id=int(handle.result.id),
                    result_count=int(handle.result.count),
                    requires_table=bool(handle.requiresTable),
                    ingredients=normalize_ingredients(consumed),
                    handle=handle,
                )
            )
        return recipes


class _Window:
    """Open chest or furnace window; every call goes through the bridge thread."""

    def __init__(self, world: "MineflayerWorld", window: Any) -> None:
        self.world = world
        self.window = window

    def items(self) -> list[ItemStack]:
        return [ItemStack(str(item.name), int(item.type), int(item.count)) for item in self.window.containerItems()]

    async def deposit(self, type_id: int, count: int) -> None:
        await self.world._call(self.window.deposit, type_id, None, count)

    async def withdraw(self, type_id: int, count: int) -> None:
        await self.world._call(self.window.withdraw, type_id, None, count)

    async def put_input(self, type_id: int, count: int) -> None:
        await self.world._call(self.window.putInput, type_id, None, count)

    async def put_fuel(self, type_id: int, count: int) -> None:
        await self.world._call(self.window.putFuel, type_id, None, count)

    async def take_output(self) -> None:
        await self.world._call(self.window.takeOutput)

    async def take_fuel(self) -> None:
        await self.world._call(self.window.takeFuel)

    async def take_input(self) -> None:
        await self.world._call(self.window.takeInput)

    async def close(self) -> None:
        await self.world._call(self.window.close)


class MineflayerWorld:
    def __init__(
        self,
        username: str,
        host: str,
        port: int,
        version: str | None = None,
    ) -> None:
        self.username = username
        self.host = host
        self.port = port
        self.version = version
        self.bot: Any = None
        self.data: MineflayerData | None = None
        self._pathfinder: Any = None
        self._vec3: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handlers: dict[str, list[Callable[..., Any]]] = {}
        self._goal_done = asyncio.Event()
        self._goal_reached = False

    # connection

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    async def connect(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            await asyncio.to_thread(self._create_bot)
        except Exception as exc:
            raise WorldActionError(_js_message(exc)) from exc
        LOGGER.info("[%s] Connecting to %s:%s", self.username, self.host, self.port)

    def _create_bot(self) -> None:
        mineflayer = require("mineflayer")
        self._pathfinder = require("mineflayer-pathfinder")
        self._vec3 = require("vec3")

        options: dict[str, Any] = {"host": self.host, "port": self.port, "username": self.username}
        if self.version:
            options["version"] = self.version
        bot = mineflayer.createBot(options)
        bot.loadPlugin(self._pathfinder.pathfinder)
        self.bot = bot

        for event in BRIDGED_EVENTS:
            On(bot, event)(self._make_listener(event))

    def _make_listener(self, event: str) -> Callable[..., None]:
        def listener(this: Any, *args: Any) -> None:
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self._on_js_event, event, args)

        return listener

    def _on_js_event(self, event: str, args: tuple[Any, ...]) -> None:
        if event == "login":
            mc_data = require("minecraft-data")(self.bot.version)
            self.data = MineflayerData(self.bot, mc_data)
            movements = self._pathfinder.Movements(self.bot, mc_data)
            self.bot.pathfinder.setMovements(movements)
            self._emit("login")
        elif event in {"chat", "whisper"}:
            username, message = str(args[0]), str(args[1])
            if username != self.username:
                self._emit(event, username, message)
        elif event == "entityHurt":
            entity = args[0] if args else None
            if entity is not None and self.bot.entity is not None and entity.id == self.bot.entity.id:
                self._emit("hurt")
        elif event == "goal_reached":
            self._goal_reached = True
            self._goal_done.set()
            self._emit("goal_reached")
        elif event == "path_update":
            status = str(args[0].status) if args else ""
            if status == "noPath":
                self._goal_reached = False
                self._goal_done.set()
            self._emit("path_update", status)
        elif event in {"end", "kicked", "error"}:
            self._emit(event, str(args[0]) if args else "")
        else:
            self._emit(event)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in self._handlers.get(event, []):
            try:
                handler(*args)
            except Exception:
                LOGGER.exception("[%s] Handler for %s failed", self.username, event)

    def quit(self) -> None:
        if self.bot is not None:
            self.bot.quit()

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except Exception as exc:
            raise WorldActionError(_js_message(exc)) from exc

    # telemetry

    def telemetry(self) -> Telemetry:
        bot = self.bot
        return Telemetry(
            position=_vec(bot.entity.position),
            health=float(bot.health or 0),
            food=float(bot.food or 0),
            time_of_day=int(bot.time.timeOfDay or 0),
            game_mode=str(bot.game.gameMode),
        )

    def inventory(self) -> list[ItemStack]:
        return [ItemStack(str(item.name), int(item.type), int(item.count)) for item in self.bot.inventory.items()]

    def _entity(self, js: Any) -> Entity:
        username = js.username
        return Entity(
            id=int(js.id),
            name=str(js.name or ""),
            kind=str(js.type or ""),
            position=_vec(js.position),
            username=str(username) if username else None,
            height=float(js.height or 1.6),
        )

    def entities(self) -> list[Entity]:
        own_id = self.bot.entity.id
        found = []
        for key in self.bot.entities:
            js = self.bot.entities[key]
            if js is None or js.id == own_id or js.position is None:
                continue
            found.append(self._entity(js))
        return found

    def player_entity(self, username: str) -> Entity | None:
        player = self.bot.players[username]
        if not player or not player.entity:
            return None
        return self._entity(player.entity)

    def _js_vec(self, position: Vec3) -> Any:
        return self._vec3.Vec3(position.x, position.y, position.z)

    def _js_block(self, block: Block) -> Any:
        js = self.bot.blockAt(self._js_vec(block.position))
        if js is None:
            raise WorldActionError(f"{block.name} at {block.position} is no longer loaded")
        return js

    def block_at(self, position: Vec3) -> Block | None:
        js = self.bot.blockAt(self._js_vec(position))
        if js is None:
            return None
        return Block(str(js.name), _vec(js.position))

    def find_block(self, names: set[str], max_distance: float) -> Block | None:
        ids = [block_id for block_id in (self.data.block_id(name) for name in names) if block_id is not None]
        if not ids:
            return None
        js = self.bot.findBlock({"matching": ids, "maxDistance": max_distance})
        if js is None:
            return None
        return Block(str(js.name), _vec(js.position))

    # movement

    def _js_goal(self, goal: Goal) -> Any:
        goals = self._pathfinder.goals
        if isinstance(goal, GoalNear):
            p = goal.position
            return goals.GoalNear(p.x, p.y, p.z, goal.range)
        if isinstance(goal, GoalBlock):
            p = goal.position
            return goals.GoalBlock(p.x, p.y, p.z)
        if isinstance(goal, GoalXZ):
            return goals.GoalXZ(goal.x, goal.z)
        raise TypeError(f"unsupported goal {goal!r}")

    def set_goal(self, goal: Goal | None) -> None:
        self._goal_done.clear()
        self._goal_reached = False
        self.bot.pathfinder.setGoal(self._js_goal(goal) if goal is not None else None)

    def stop_moving(self) -> None:
        self.bot.pathfinder.stop()
        self.bot.pathfinder.setGoal(None)

    async def wait_for_goal(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._goal_done.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self._goal_reached

    # interaction

    async def open_container(self, block: Block) -> _Window:
        return _Window(self, await self._call(self.bot.openContainer, self._js_block(block)))

    async def open_furnace(self, block: Block) -> _Window:
        return _Window(self, await self._call(self.bot.openFurnace, self._js_block(block)))

    async def dig(self, block: Block) -> None:
        await self._call(self.bot.dig, self._js_block(block))

    async def place_block(self, reference: Block, face: Vec3) -> None:
        await self._call(self.bot.placeBlock, self._js_block(reference), self._js_vec(face))

    async def activate_block(self, block: Block) -> None:
        await self._call(self.bot.activateBlock, self._js_block(block))

    async def attack(self, entity: Entity) -> None:
        js = self.bot.entities[entity.id]
        if js is None:
            raise WorldActionError(f"{entity.label} is gone")
        await self._call(self.bot.attack, js)

    async def consume(self) -> None:
        await self._call(self.bot.consume)

    async def equip(self, item: ItemStack, destination: str) -> None:
        await self._call(self.bot.equip, item.type_id, destination)

    async def toss(self, type_id: int, count: int) -> None:
        await self._call(self.bot.toss, type_id, None, count)

    async def sleep(self, bed: Block) -> None:
        await self._call(self.bot.sleep, self._js_block(bed))

    async def look_at(self, position: Vec3) -> None:
        await self._call(self.bot.lookAt, self._js_vec(position))

    async def craft(self, recipe: Recipe, count: int, table: Block | None) -> None:
        table_js = self._js_block(table) if table is not None else None
        await self._call(self.bot.craft, recipe.handle, count, table_js)

    # chat

    def chat(self, text: str) -> None:
        self.bot.chat(text)

    def whisper(self, username: str, text: str) -> None:
        self.bot.whisper(username, text)
