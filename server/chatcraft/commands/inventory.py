from __future__ import annotations

import asyncio
import logging

from chatcraft.agents.agent import ItemStack
from chatcraft.agents.movement import FACES, cube_offsets, equip_destination
from chatcraft.commands.context import ActionContext, int_arg, is_all, str_arg
from chatcraft.commands.parser import Arg
from chatcraft.world.connection import GoalNear, WorldActionError

LOGGER = logging.getLogger("chatcraft.commands.inventory")

NON_SOLID_BLOCKS = {"air", "water", "lava"}


def find_stack(items: list[ItemStack], name: str) -> ItemStack | None:
    return next((item for item in items if item.name == name), None)


def held_count(items: list[ItemStack], name: str) -> int:
    return sum(item.count for item in items if item.name == name)


async def give_player(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    player = str_arg(args[0] if args else None)
    target = ctx.world.player_entity(player) if player else None
    if target is None:
        ctx.report(f"Player {player} not found")
        return

    first = args[1] if len(args) > 1 else None
    if is_all(first):
        await _give_everything(ctx, player)
        return

    item_name = str_arg(first)
    amount = int_arg(args[2] if len(args) > 2 else None, 1)
    items = ctx.world.inventory()
    have = held_count(items, item_name)
    if not item_name or have < amount:
        ctx.report(f"Don't have enough {item_name} (need {amount}, have {have})")
        return

    ctx.report(f"Giving {amount} {item_name} to {player}")
    if not await _approach(ctx, player):
        return

    # the walk may have taken a while; check the stack is still there
    stack = find_stack(ctx.world.inventory(), item_name)
    if stack is None:
        ctx.report(f"Don't have enough {item_name} (need {amount}, have 0)")
        return
    try:
        await ctx.world.toss(stack.type_id, amount)
    except WorldActionError as exc:
        ctx.report(f"Failed to give item: {exc.cause}")
        return
    ctx.report(f"Tossed {amount} {item_name}")


async def _give_everything(ctx: ActionContext, player: str) -> None:
    items = list(ctx.world.inventory())
    if not items:
        ctx.report("Inventory is empty")
        return

    ctx.report(f"Giving entire inventory to {player} ({len(items)} items)")
    if not await _approach(ctx, player):
        return
    for item in items:
        try:
            await ctx.world.toss(item.type_id, item.count)
        except WorldActionError as exc:
            ctx.report(f"Failed to give {item.name}: {exc.cause}")


async def _approach(ctx: ActionContext, player: str) -> bool:
    target = ctx.world.player_entity(player)
    if target is None:
        ctx.report(f"Player {player} not found")
        return False

    if not await ctx.travel(GoalNear(target.position, 2)):
        ctx.report(f"Could not reach {player}")
        return False
    await asyncio.sleep(ctx.tuning.give_settle_sec)

    # face the player so dropped items land at their feet
    target = ctx.world.player_entity(player)
    if target is None:
        ctx.report(f"Player {player} not found")
        return False
    await ctx.world.look_at(target.position.offset(0, target.height, 0))
    return True


async def consume(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    item_name = str_arg(args[0] if args else None)
    stack = find_stack(ctx.world.inventory(), item_name)
    if stack is None:
        ctx.report(f"Don't have {item_name} to consume")
        return

    ctx.report(f"Consuming: {item_name}")
    try:
        await ctx.world.equip(stack, "hand")
        await ctx.world.consume()
    except WorldActionError as exc:
        ctx.report(f"Failed to consume {item_name}: {exc.cause}")


async def equip(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    item_name = str_arg(args[0] if args else None)
    stack = find_stack(ctx.world.inventory(), item_name)
    if stack is None:
        ctx.report(f"Don't have {item_name} to equip")
        return

    ctx.report(f"Equipping: {item_name}")
    try:
        await ctx.world.equip(stack, equip_destination(stack.name))
    except WorldActionError as exc:
        ctx.report(f"Failed to equip {item_name}: {exc.cause}")


async def discard(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    first = args[0] if args else None
    if is_all(first):
        items = list(ctx.world.inventory())
        if not items:
            ctx.report("Inventory is empty")
            return
        ctx.report(f"Discarding entire inventory ({len(items)} items)")
        for item in items:
            try:
                await ctx.world.toss(item.type_id, item.count)
            except WorldActionError as exc:
                ctx.report(f"Failed to discard {item.name}: {exc.cause}")
        return

    item_name = str_arg(first)
    amount = int_arg(args[1] if len(args) > 1 else None, 1)
    items = ctx.world.inventory()
    stack = find_stack(items, item_name)
    if stack is None or held_count(items, item_name) < amount:
        ctx.report(f"Don't have enough {item_name} to discard")
        return

    ctx.report(f"Discarding {amount} {item_name}")
    try:
        await ctx.world.toss(stack.type_id, amount)
    except WorldActionError as exc:
        ctx.report(f"Failed to discard {item_name}: {exc.cause}")


async def place_here(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    item_name = str_arg(args[0] if args else None)
    stack = find_stack(ctx.world.inventory(), item_name)
    if stack is None:
        ctx.report(f"Don't have {item_name} to place")
        return

    ctx.report(f"Searching for a valid spot to place {item_name} nearby...")
    try:
        await ctx.world.equip(stack, "hand")
    except WorldActionError as exc:
        ctx.report(f"Failed to equip {item_name}: {exc.cause}")
        return

    base = ctx.world.telemetry().position.floored()
    for dx, dy, dz in cube_offsets(2, 1):
        reference = ctx.world.block_at(base.offset(dx, dy, dz))
        if reference is None or reference.name in NON_SOLID_BLOCKS:
            continue
        for face in FACES:
            spot = reference.position.offset(face.x, face.y, face.z)
            existing = ctx.world.block_at(spot)
            if existing is None or existing.name != "air":
                continue
            try:
                await ctx.world.place_block(reference, face)
            except WorldActionError as exc:
                LOGGER.debug("[%s] Placement against %s rejected: %s", ctx.name, reference.position, exc.cause)
                continue
            ctx.report(f"Placed {item_name} at {spot.x:g},{spot.y:g},{spot.z:g}")
            return

    ctx.report(f"Could not find a valid spot to place {item_name} nearby.")
