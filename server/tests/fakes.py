from __future__ import annotations

from collections.abc import Callable
from typing import Any

from chatcraft.agents.agent import Block, Entity, ItemStack, Recipe, Telemetry, Vec3
from chatcraft.world.connection import WorldActionError


class FakeData:
    def __init__(
        self,
        items: dict[str, int] | None = None,
        blocks: dict[str, int] | None = None,
        foods: dict[str, float] | None = None,
        recipes: dict[int, list[Recipe]] | None = None,
    ) -> None:
        self.items = items or {}
        self.blocks = blocks or {}
        self.foods = foods or {}
        self.recipes = recipes or {}

    def item_id(self, name: str) -> int | None:
        return self.items.get(name)

    def block_id(self, name: str) -> int | None:
        return self.blocks.get(name)

    def item_name(self, type_id: int) -> str | None:
        return next((name for name, item_id in self.items.items() if item_id == type_id), None)

    def food_points(self, name: str) -> float | None:
        return self.foods.get(name)

    def recipes_for(self, item_id: int) -> list[Recipe]:
        return list(self.recipes.get(item_id, []))


class FakeContainer:
    def __init__(self, world: "FakeWorld", items: list[ItemStack] | None = None) -> None:
        self.world = world
        self.contents = items or []
        self.deposits: list[tuple[int, int]] = []
        self.withdrawals: list[tuple[int, int]] = []
        self.closed = False

    def items(self) -> list[ItemStack]:
        return list(self.contents)

    async def deposit(self, type_id: int, count: int) -> None:
        self.deposits.append((type_id, count))

    async def withdraw(self, type_id: int, count: int) -> None:
        self.withdrawals.append((type_id, count))

    async def close(self) -> None:
        self.closed = True
        self.world.open_windows -= 1


class FakeFurnace:
    def __init__(self, world: "FakeWorld") -> None:
        self.world = world
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def put_input(self, type_id: int, count: int) -> None:
        self.calls.append(("put_input", (type_id, count)))

    async def put_fuel(self, type_id: int, count: int) -> None:
        self.calls.append(("put_fuel", (type_id, count)))

    async def take_output(self) -> None:
        self.calls.append(("take_output", None))

    async def take_fuel(self) -> None:
        self.calls.append(("take_fuel", None))

    async def take_input(self) -> None:
        self.calls.append(("take_input", None))

    async def close(self) -> None:
        self.closed = True
        self.world.open_windows -= 1


class FakeWorld:
    """In-memory world connection that records every call made against it."""

    def __init__(self, username: str = "Steve", data: FakeData | None = None) -> None:
        self.username = username
        self.data = data or FakeData()
        self.status = Telemetry(position=Vec3(0, 64, 0), health=20, food=20, time_of_day=1000)
        self.items: list[ItemStack] = []
        self.others: list[Entity] = []
        self.blocks: dict[tuple[int, int, int], str] = {}
        self.found_blocks: dict[str, Block] = {}
        self.chest_items: list[ItemStack] = []
        self.goal_reached = True
        self.fail: dict[str, str] = {}
        self.calls: list[tuple[str, Any]] = []
        self.goals: list[Any] = []
        self.public: list[str] = []
        self.whispers: list[tuple[str, str]] = []
        self.handlers: dict[str, list[Callable[..., Any]]] = {}
        self.containers: list[FakeContainer] = []
        self.furnaces: list[FakeFurnace] = []
        self.open_windows = 0
        self.max_open_windows = 0
        self.connects = 0
        self.quits = 0

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise WorldActionError(self.fail[name])

    # telemetry

    def telemetry(self) -> Telemetry:
        return self.status

    def inventory(self) -> list[ItemStack]:
        return list(self.items)

    def entities(self) -> list[Entity]:
        return list(self.others)

    def player_entity(self, username: str) -> Entity | None:
        return next((entity for entity in self.others if entity.username == username), None)

    def block_at(self, position: Vec3) -> Block | None:
        key = (int(position.x), int(position.y), int(position.z))
        name = self.blocks.get(key)
        return Block(name, Vec3(*key)) if name is not None else None

    def find_block(self, names: set[str], max_distance: float) -> Block | None:
        self.calls.append(("find_block", (frozenset(names), max_distance)))
        for name in sorted(names):
            if name in self.found_blocks:
                return self.found_blocks[name]
        return None

    # movement

    def set_goal(self, goal: Any) -> None:
        self.goals.append(goal)

    def stop_moving(self) -> None:
        self.calls.append(("stop_moving", None))

    async def wait_for_goal(self, timeout: float) -> bool:
        return self.goal_reached

    # interaction

    async def open_container(self, block: Block) -> FakeContainer:
        self._check("open_container")
        self.open_windows += 1
        self.max_open_windows = max(self.max_open_windows, self.open_windows)
        container = FakeContainer(self, list(self.chest_items))
        self.containers.append(container)
        return container

    async def open_furnace(self, block: Block) -> FakeFurnace:
        self._check("open_furnace")
        self.open_windows += 1
        furnace = FakeFurnace(self)
        self.furnaces.append(furnace)
        return furnace

    async def dig(self, block: Block) -> None:
        self._check("dig")
        self.calls.append(("dig", block))

    async def place_block(self, reference: Block, face: Vec3) -> None:
        self._check("place_block")
        self.calls.append(("place_block", (reference, face)))

    async def activate_block(self, block: Block) -> None:
        self._check("activate_block")
        self.calls.append(("activate_block", block))

    async def attack(self, entity: Entity) -> None:
        self._check("attack")
        self.calls.append(("attack", entity.id))

    async def consume(self) -> None:
        self._check("consume")
        self.calls.append(("consume", None))

    async def equip(self, item: ItemStack, destination: str) -> None:
        self._check("equip")
        self.calls.append(("equip", (item.name, destination)))

    async def toss(self, type_id: int, count: int) -> None:
        self._check("toss")
        self.calls.append(("toss", (type_id, count)))

    async def sleep(self, bed: Block) -> None:
        self._check("sleep")
        self.calls.append(("sleep", bed))

    async def look_at(self, position: Vec3) -> None:
        self._check("look_at")
        self.calls.append(("look_at", position))

    async def craft(self, recipe: Recipe, count: int, table: Block | None) -> None:
        self._check("craft")
        self.calls.append(("craft", (recipe.result_id, count, table)))

    # chat

    def chat(self, text: str) -> None:
        self.public.append(text)

    def whisper(self, username: str, text: str) -> None:
        self.whispers.append((username, text))

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(*args)

    async def connect(self) -> None:
        self._check("connect")
        self.connects += 1

    def quit(self) -> None:
        self.quits += 1

    # helpers for tests

    def called(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]

    def said(self) -> list[str]:
        return self.public + [text for _, text in self.whispers]


class FakeLLM:
    """Chat model that returns scripted replies and records what it was shown."""

    def __init__(self, replies: list[str | None | Exception] | None = None, default: str | None = "ok") -> None:
        self.replies = list(replies or [])
        self.default = default
        self.seen: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str | None:
        self.seen.append([dict(message) for message in messages])
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


def player(username: str, x: float = 3, y: float = 64, z: float = 0, entity_id: int = 100) -> Entity:
    return Entity(id=entity_id, name="player", kind="player", position=Vec3(x, y, z), username=username)


def mob(name: str, x: float = 2, y: float = 64, z: float = 0, entity_id: int = 200) -> Entity:
    return Entity(id=entity_id, name=name, kind="hostile", position=Vec3(x, y, z))
