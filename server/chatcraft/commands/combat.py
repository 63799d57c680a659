from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chatcraft.agents.agent import Entity
from chatcraft.agents.movement import nearest
from chatcraft.commands.context import ActionContext, str_arg
from chatcraft.commands.parser import Arg
from chatcraft.config import Tuning
from chatcraft.world.connection import GoalNear, WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.commands.combat")


def entity_by_id(world: WorldConnection, entity_id: int) -> Entity | None:
    return next((entity for entity in world.entities() if entity.id == entity_id), None)


async def pursue(
    world: WorldConnection,
    tuning: Tuning,
    locate: Callable[[], Entity | None],
    max_range: float,
    health_floor: float | None = None,
) -> str:
    """Close in on and strike a target until one of the exit conditions holds.

    ``locate`` is called before every step so a despawned target is noticed
    on the next poll. Returns the reason the chase ended: ``lost``,
    ``out_of_range``, ``low_health`` or ``timeout``. The movement goal is left
    to the caller.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + tuning.combat_max_sec
    while True:
        if loop.time() >= deadline:
            return "timeout"
        target = locate()
        if target is None:
            return "lost"

        me = world.telemetry()
        if health_floor is not None and me.health < health_floor:
            return "low_health"
        distance = me.position.distance_to(target.position)
        if distance > max_range:
            return "out_of_range"

        if distance <= tuning.attack_reach:
            try:
                await world.attack(target)
            except WorldActionError as exc:
                LOGGER.debug("[%s] Strike on %s rejected: %s", world.username, target.label, exc.cause)
        else:
            world.set_goal(GoalNear(target.position, tuning.melee_range))
        await asyncio.sleep(tuning.combat_poll_sec)


async def attack(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    kind = str_arg(args[0] if args else None)
    origin = ctx.world.telemetry().position
    candidates = [entity for entity in ctx.world.entities() if entity.name == kind and not entity.is_player]
    target = nearest(origin, candidates, max_distance=ctx.tuning.interact_radius)
    if target is None:
        ctx.report(f"No {kind} found nearby to attack.")
        return

    ctx.report(f"Attacking nearest {kind}")
    await ctx.travel(GoalNear(target.position, ctx.tuning.melee_range))

    target = entity_by_id(ctx.world, target.id)
    if target is None:
        ctx.report(f"The {kind} is gone")
        return
    if ctx.world.telemetry().position.distance_to(target.position) > ctx.tuning.attack_reach:
        ctx.report(f"Could not get close enough to the {kind}")
        return
    try:
        await ctx.world.attack(target)
    except WorldActionError as exc:
        ctx.report(f"Failed to attack {kind}: {exc.cause}")


_PLAYER_ATTACK_ENDINGS = {
    "lost": "Lost sight of {name}",
    "out_of_range": "{name} got away",
    "low_health": "Too hurt to keep fighting {name}",
    "timeout": "Stopped attacking {name}",
}


async def _attack_player(ctx: ActionContext, name: str, target_id: int) -> None:
    reason = await pursue(
        ctx.world,
        ctx.tuning,
        lambda: ctx.world.player_entity(name),
        max_range=ctx.tuning.pursuit_range,
    )
    ctx.world.stop_moving()
    if ctx.session.combat_target == target_id:
        ctx.session.combat_target = None
    LOGGER.info("[%s] Attack on %s ended: %s", ctx.name, name, reason)
    ctx.report(_PLAYER_ATTACK_ENDINGS[reason].format(name=name))


async def attack_player(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    name = str_arg(args[0] if args else None)
    target = ctx.world.player_entity(name) if name else None
    if target is None:
        ctx.report(f"Player {name} not found.")
        return

    ctx.report(f"Attacking player: {name}")
    ctx.session.combat_target = target.id
    ctx.world.set_goal(GoalNear(target.position, 1))
    ctx.session.combat.start(_attack_player(ctx, name, target.id))
