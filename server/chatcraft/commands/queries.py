from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from chatcraft.agents.movement import cube_offsets
from chatcraft.commands.parser import Command
from chatcraft.session.state import SessionState
from chatcraft.world.connection import WorldConnection

LOGGER = logging.getLogger("chatcraft.commands.queries")

INTERNAL_NOTE = "Since user cannot see this message, in my next response I will give an overview of this."


@dataclass(frozen=True)
class QueryResult:
    name: str
    text: str
    internal: bool = True

    def render(self) -> str:
        body = f"{self.text}. {INTERNAL_NOTE}" if self.internal else self.text
        return f"{self.name}: {body}"


class QueryResolver:
    """Read-only probes of world state whose answers go back to the model only."""

    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        view_chest: Callable[[], Awaitable[str]] | None = None,
    ) -> None:
        self.world = world
        self.session = session
        self.view_chest = view_chest
        self._handlers: dict[str, Callable[[], Awaitable[QueryResult]]] = {
            "stats": self.stats,
            "inventory": self.inventory,
            "nearbyBlocks": self.nearby_blocks,
            "entities": self.entities,
            "savedPlaces": self.saved_places,
            "viewChest": self.chest_contents,
        }

    async def resolve(self, command: Command) -> QueryResult | None:
        handler = self._handlers.get(command.name)
        if handler is None:
            LOGGER.info("[%s] Unknown query command: %s", self.world.username, command.name)
            return None
        return await handler()

    async def stats(self) -> QueryResult:
        t = self.world.telemetry()
        text = (
            f"Location: {t.position.x:.1f},{t.position.y:.1f},{t.position.z:.1f} | "
            f"Health: {t.health:g}/{t.max_health:g} | Hunger: {t.food:g}/{t.max_food:g} | "
            f"Time: {t.time_of_day} | Mode: {t.game_mode}"
        )
        return QueryResult("stats", text)

    async def inventory(self) -> QueryResult:
        items = [f"{item.name} x{item.count}" for item in self.world.inventory()]
        if not items:
            return QueryResult("inventory", "Empty", internal=False)
        return QueryResult("inventory", ", ".join(items))

    async def nearby_blocks(self) -> QueryResult:
        origin = self.world.telemetry().position
        names: list[str] = []
        for dx, dy, dz in cube_offsets(3, 2):
            block = self.world.block_at(origin.offset(dx, dy, dz))
            if block is not None and block.name not in names:
                names.append(block.name)
        if not names:
            return QueryResult("nearbyBlocks", "None nearby", internal=False)
        return QueryResult("nearbyBlocks", ", ".join(names))

    async def entities(self) -> QueryResult:
        names = [
            entity.username
            for entity in self.world.entities()
            if entity.username and entity.username != self.world.username
        ]
        if not names:
            return QueryResult("entities", "No players nearby", internal=False)
        return QueryResult("entities", ", ".join(names))

    async def saved_places(self) -> QueryResult:
        places = self.session.saved_places
        if not places:
            return QueryResult("savedPlaces", "No saved places", internal=False)
        listing = " | ".join(f"{name}: {pos.short()}" for name, pos in places.items())
        return QueryResult("savedPlaces", listing)

    async def chest_contents(self) -> QueryResult:
        if self.view_chest is None:
            return QueryResult("viewChest", "Cannot access chest", internal=False)
        text = await self.view_chest()
        internal = text not in {"No chest found nearby", "Empty chest", "Cannot access chest"}
        return QueryResult("viewChest", text, internal=internal)
