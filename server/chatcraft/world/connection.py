"""Boundary types for the world engine and the game data tables.

Everything the orchestration core needs from the game goes through the two
protocols below. Telemetry reads are synchronous snapshots; every operation that
talks to the server is a coroutine and raises :class:`WorldActionError` when the
server (or the engine) rejects it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from chatcraft.agents.agent import Block, Entity, Ingredient, ItemStack, Recipe, Telemetry, Vec3


class WorldActionError(Exception):
    """The world rejected an operation; ``cause`` is the engine's reason."""

    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause


@dataclass(frozen=True)
class GoalNear:
    position: Vec3
    range: float = 1.0


@dataclass(frozen=True)
class GoalBlock:
    position: Vec3


@dataclass(frozen=True)
class GoalXZ:
    x: float
    z: float


Goal = GoalNear | GoalBlock | GoalXZ


class Container(Protocol):
    def items(self) -> list[ItemStack]: ...

    async def deposit(self, type_id: int, count: int) -> None: ...

    async def withdraw(self, type_id: int, count: int) -> None: ...

    async def close(self) -> None: ...


class Furnace(Protocol):
    async def put_input(self, type_id: int, count: int) -> None: ...

    async def put_fuel(self, type_id: int, count: int) -> None: ...

    async def take_output(self) -> None: ...

    async def take_fuel(self) -> None: ...

    async def take_input(self) -> None: ...

    async def close(self) -> None: ...


class GameData(Protocol):
    def item_id(self, name: str) -> int | None: ...

    def block_id(self, name: str) -> int | None: ...

    def item_name(self, type_id: int) -> str | None: ...

    def food_points(self, name: str) -> float | None: ...

    def recipes_for(self, item_id: int) -> list[Recipe]: ...


class WorldConnection(Protocol):
    username: str
    data: GameData

    def telemetry(self) -> Telemetry: ...

    def inventory(self) -> list[ItemStack]: ...

    def entities(self) -> list[Entity]: ...

    def player_entity(self, username: str) -> Entity | None: ...

    def block_at(self, position: Vec3) -> Block | None: ...

    def find_block(self, names: set[str], max_distance: float) -> Block | None: ...

    def set_goal(self, goal: Goal | None) -> None: ...

    def stop_moving(self) -> None: ...

    async def wait_for_goal(self, timeout: float) -> bool: ...

    async def open_container(self, block: Block) -> Container: ...

    async def open_furnace(self, block: Block) -> Furnace: ...

    async def dig(self, block: Block) -> None: ...

    async def place_block(self, reference: Block, face: Vec3) -> None: ...

    async def activate_block(self, block: Block) -> None: ...

    async def attack(self, entity: Entity) -> None: ...

    async def consume(self) -> None: ...

    async def equip(self, item: ItemStack, destination: str) -> None: ...

    async def toss(self, type_id: int, count: int) -> None: ...

    async def sleep(self, bed: Block) -> None: ...

    async def look_at(self, position: Vec3) -> None: ...

    async def craft(self, recipe: Recipe, count: int, table: Block | None) -> None: ...

    def chat(self, text: str) -> None: ...

    def whisper(self, username: str, text: str) -> None: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    async def connect(self) -> None: ...

    def quit(self) -> None: ...


def _ingredient_entry(entry: Any) -> tuple[int, int] | None:
    if entry is None:
        return None
    if isinstance(entry, bool):
        return None
    if isinstance(entry, int):
        return (entry, 1) if entry >= 0 else None
    if isinstance(entry, (list, tuple)):
        # alternative choices: any one satisfies the slot, count the first
        return _ingredient_entry(entry[0]) if entry else None
    if isinstance(entry, Mapping):
        raw_id = entry.get("id", entry.get("type"))
    else:
        raw_id = getattr(entry, "id", getattr(entry, "type", None))
        entry = {"count": getattr(entry, "count", 1)}
    if raw_id is None or isinstance(raw_id, bool):
        return None
    try:
        type_id = int(raw_id)
    except (TypeError, ValueError):
        return None
    if type_id < 0:
        return None
    count = entry.get("count") or 1
    return type_id, abs(int(count))


def normalize_ingredients(raw: Iterable[Any] | Mapping[str, Any] | None) -> list[Ingredient]:
    """Collapse the engine's ingredient shapes into summed ``Ingredient`` rows.

    Accepted shapes: a list of bare ids, ``{id|type, count}`` objects, or
    alternative-choice lists; or a named map ``{key: {id, count}}``. Entries that
    cannot be resolved to an id are dropped.
    """
    if raw is None:
        return []
    entries = raw.values() if isinstance(raw, Mapping) else raw

    totals: dict[int, int] = {}
    for entry in entries:
        resolved = _ingredient_entry(entry)
        if resolved is None:
            continue
        type_id, count = resolved
        totals[type_id] = totals.get(type_id, 0) + count
    return [Ingredient(id=type_id, count=count) for type_id, count in totals.items()]
