from __future__ import annotations

import asyncio
import logging

from chatcraft.agents.agent import Vec3
from chatcraft.agents.movement import nearest, random_point_around
from chatcraft.commands.context import ActionContext, float_arg, int_arg, str_arg
from chatcraft.commands.parser import Arg
from chatcraft.world.connection import GoalBlock, GoalNear, GoalXZ

LOGGER = logging.getLogger("chatcraft.commands.navigation")


async def go_to_player(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    name = str_arg(args[0] if args else None)
    target = ctx.world.player_entity(name) if name else None
    if target is None:
        ctx.report(f"Player {name} not found.")
        return

    closeness = int_arg(args[1] if len(args) > 1 else None, 2)
    ctx.report(f"Going to player: {name} (distance: {closeness})")
    ctx.world.set_goal(GoalNear(target.position, closeness))


async def _follow(ctx: ActionContext, name: str, distance: int) -> None:
    while True:
        target = ctx.world.player_entity(name)
        if target is None:
            if ctx.session.following == name:
                ctx.session.following = None
            ctx.report(f"Lost track of {name}, stopped following")
            return

        separation = ctx.world.telemetry().position.distance_to(target.position)
        if separation > distance:
            LOGGER.debug("[%s] %s is %.1f away, closing in", ctx.name, name, separation)
            ctx.world.set_goal(GoalNear(target.position, distance))
        await asyncio.sleep(ctx.tuning.follow_poll_sec)


async def follow_player(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    name = str_arg(args[0] if args else None)
    if not name or ctx.world.player_entity(name) is None:
        ctx.report(f"Player {name} not found.")
        return

    distance = int_arg(args[1] if len(args) > 1 else None, 3)
    ctx.session.following = name
    ctx.report(f"Following player: {name} at distance: {distance}")
    ctx.session.follow.start(_follow(ctx, name, distance))


async def go_to_coordinates(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    coords = [float_arg(args[idx] if len(args) > idx else None) for idx in range(3)]
    if any(value is None for value in coords):
        ctx.report("Need x, y and z coordinates")
        return

    x, y, z = coords
    closeness = int_arg(args[3] if len(args) > 3 else None, 1)
    ctx.report(f"Going to coordinates: {x:g}, {y:g}, {z:g}")
    ctx.world.set_goal(GoalNear(Vec3(x, y, z), closeness))


async def search_for_block(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    block_type = str_arg(args[0] if args else None)
    search_range = int_arg(args[1] if len(args) > 1 else None, 16)
    ctx.report(f"Searching for block: {block_type} in range: {search_range}")

    if not block_type or ctx.data.block_id(block_type) is None:
        ctx.report(f"Unknown block type: {block_type}")
        return

    block = ctx.world.find_block({block_type}, search_range)
    if block is None:
        ctx.report(f"No {block_type} found within {search_range} blocks")
        return

    ctx.report(f"Found {block_type} at {block.position}")
    ctx.world.set_goal(GoalBlock(block.position))


async def search_for_entity(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    entity_type = str_arg(args[0] if args else None)
    search_range = int_arg(args[1] if len(args) > 1 else None, int(ctx.tuning.entity_search_radius))
    ctx.report(f"Searching for entity: {entity_type} in range: {search_range}")

    origin = ctx.world.telemetry().position
    candidates = [entity for entity in ctx.world.entities() if entity.name == entity_type]
    found = nearest(origin, candidates, max_distance=search_range)
    if found is None:
        ctx.report(f"No {entity_type} found within {search_range} blocks")
        return

    ctx.report(f"Found {entity_type} at {found.position}")
    ctx.world.set_goal(GoalNear(found.position, 2))


async def move_away(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    distance = int_arg(args[0] if args else None, 5)
    ctx.report(f"Moving away distance: {distance}")
    point = random_point_around(ctx.world.telemetry().position, distance)
    ctx.world.set_goal(GoalXZ(point.x, point.z))


async def remember_here(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    name = str_arg(args[0] if args else None)
    if not name:
        ctx.report("Need a name to remember this place")
        return

    pos = ctx.world.telemetry().position
    ctx.session.saved_places[name] = Vec3(pos.x, pos.y, pos.z)
    ctx.report(f'Saved location "{name}" at {pos.short()}')


async def saved_places(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    places = ctx.session.saved_places
    if not places:
        ctx.report("No saved places.")
        return
    listing = " | ".join(f"{name}: {pos.short()}" for name, pos in places.items())
    ctx.report(f"Saved places: {listing}")


async def go_to_remembered_place(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    name = str_arg(args[0] if args else None)
    place = ctx.session.saved_places.get(name)
    if place is None:
        ctx.report(f"No saved place named: {name}")
        return

    ctx.report(f"Going to remembered place: {name} at {place.short()}")
    ctx.world.set_goal(GoalNear(place, 1))


async def _hold(ctx: ActionContext, seconds: int) -> None:
    await asyncio.sleep(seconds)
    ctx.report("Finished staying")


async def stay(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    seconds = int_arg(args[0] if args else None, -1)
    ctx.report(f"Staying for {'forever' if seconds < 0 else f'{seconds} seconds'}")

    # staying means not following anyone either
    ctx.session.follow.cancel()
    ctx.session.following = None
    ctx.world.stop_moving()
    if seconds > 0:
        ctx.session.stay.start(_hold(ctx, seconds))
    else:
        ctx.session.stay.cancel()
