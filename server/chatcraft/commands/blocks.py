from __future__ import annotations

import asyncio
import logging

from chatcraft.commands.context import ActionContext, int_arg, str_arg
from chatcraft.commands.parser import Arg
from chatcraft.world.connection import GoalNear, WorldActionError

LOGGER = logging.getLogger("chatcraft.commands.blocks")

BED_COLORS = (
    "white", "orange", "magenta", "light_blue", "yellow", "lime", "pink", "gray",
    "light_gray", "cyan", "purple", "blue", "brown", "green", "red", "black",
)
BED_NAMES = {f"{color}_bed" for color in BED_COLORS} | {"bed"}
LIQUIDS = {"lava", "water"}
FALL_CHECK_DEPTH = 5


async def collect_blocks(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    block_type = str_arg(args[0] if args else None)
    count = int_arg(args[1] if len(args) > 1 else None, 1)
    ctx.report(f"Collecting {count} {block_type} blocks")

    if not block_type or ctx.data.block_id(block_type) is None:
        ctx.report(f"Unknown block type: {block_type}")
        return

    collected = 0
    while collected < count:
        block = ctx.world.find_block({block_type}, ctx.tuning.block_search_radius)
        if block is None:
            ctx.report(f"No more {block_type} blocks found nearby")
            break
        if not await ctx.travel(GoalNear(block.position, 2)):
            ctx.report(f"Could not reach {block_type} at {block.position}")
            break
        try:
            await ctx.world.dig(block)
        except WorldActionError as exc:
            ctx.report(f"Failed to collect {block_type}: {exc.cause}")
            break
        collected += 1
        LOGGER.debug("[%s] Collected %s (%d/%d)", ctx.name, block_type, collected, count)
        await asyncio.sleep(ctx.tuning.dig_delay_sec)

    if collected:
        ctx.report(f"Finished collecting {collected} {block_type}")


async def dig_down(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    depth = int_arg(args[0] if args else None, 1)
    ctx.report(f"Digging down {depth} blocks")

    dug = 0
    while dug < depth:
        position = ctx.world.telemetry().position
        below = ctx.world.block_at(position.offset(0, -1, 0))
        if below is None or below.name == "air":
            ctx.report("Nothing to dig below")
            return
        if below.name in LIQUIDS:
            ctx.report(f"Stopped digging - found {below.name}")
            return
        far_below = ctx.world.block_at(position.offset(0, -FALL_CHECK_DEPTH, 0))
        if far_below is not None and far_below.name == "air":
            ctx.report("Stopped digging - dangerous fall detected")
            return

        try:
            await ctx.world.dig(below)
        except WorldActionError as exc:
            ctx.report(f"Failed to dig: {exc.cause}")
            return
        dug += 1
        await asyncio.sleep(ctx.tuning.dig_delay_sec)

    ctx.report(f"Finished digging down {dug} blocks")


async def go_to_bed(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    ctx.report("Going to bed")
    bed = ctx.world.find_block(BED_NAMES, ctx.tuning.bed_radius)
    if bed is None:
        ctx.report("No bed found nearby")
        return

    if not await ctx.travel(GoalNear(bed.position, 2)):
        ctx.report("Could not reach the bed")
        return
    try:
        await ctx.world.sleep(bed)
    except WorldActionError as exc:
        ctx.report(f"Failed to sleep: {exc.cause}")
        return
    ctx.report("Sleeping in bed")


async def activate(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    block_type = str_arg(args[0] if args else None)
    block = ctx.world.find_block({block_type}, ctx.tuning.interact_radius) if block_type else None
    if block is None:
        ctx.report(f"No {block_type} found nearby")
        return

    ctx.report(f"Activating nearest {block_type}")
    if not await ctx.travel(GoalNear(block.position, 2)):
        ctx.report(f"Could not reach {block_type}")
        return
    try:
        await ctx.world.activate_block(block)
    except WorldActionError as exc:
        ctx.report(f"Failed to activate {block_type}: {exc.cause}")
        return
    ctx.report(f"Activated {block_type}")
