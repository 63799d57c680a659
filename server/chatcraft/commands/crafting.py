from __future__ import annotations

import logging
from collections.abc import Iterable

from chatcraft.agents.agent import Ingredient, ItemStack, Recipe
from chatcraft.commands.context import ActionContext, int_arg, str_arg
from chatcraft.commands.inventory import find_stack, held_count
from chatcraft.commands.parser import Arg
from chatcraft.world.connection import GameData, WorldActionError

LOGGER = logging.getLogger("chatcraft.commands.crafting")

CRAFTING_TABLE = "crafting_table"
FURNACE_BLOCKS = {"furnace", "blast_furnace"}
FUEL_ITEMS = ("coal", "charcoal", "coal_block")


def inventory_counts(items: Iterable[ItemStack]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for item in items:
        counts[item.type_id] = counts.get(item.type_id, 0) + item.count
    return counts


def limiting_count(counts: dict[int, int], ingredients: list[Ingredient]) -> int | None:
    """How many times the recipe can run from ``counts``; ``None`` when it needs nothing."""
    if not ingredients:
        return None
    return min((counts.get(ing.id, 0) // ing.count for ing in ingredients if ing.count > 0), default=None)


def choose_recipe(recipes: list[Recipe]) -> Recipe | None:
    if not recipes:
        return None
    return next((recipe for recipe in recipes if not recipe.requires_table), recipes[0])


def missing_ingredients(data: GameData, counts: dict[int, int], ingredients: list[Ingredient]) -> str:
    parts = []
    for ing in ingredients:
        have = counts.get(ing.id, 0)
        if have >= ing.count:
            continue
        name = data.item_name(ing.id) or str(ing.id)
        parts.append(f"{name}: need {ing.count}, have {have}")
    return ", ".join(parts)


async def craft_recipe(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    item_name = str_arg(args[0] if args else None)
    if not item_name:
        ctx.report("No item specified for crafting")
        return

    amount = int_arg(args[1] if len(args) > 1 else None, 1)
    ctx.report(f"Attempting to craft {amount} {item_name}")

    if ctx.session.craft_lock.locked():
        LOGGER.info("[%s] Waiting for the current craft before crafting %s", ctx.name, item_name)
    async with ctx.session.craft_lock:
        item_id = ctx.data.item_id(item_name)
        if item_id is None:
            ctx.report(f"Unknown item: {item_name}")
            return

        recipe = choose_recipe(ctx.data.recipes_for(item_id))
        if recipe is None:
            ctx.report(f"No recipe found to craft {item_name}")
            return

        table = None
        if recipe.requires_table:
            table = ctx.world.find_block({CRAFTING_TABLE}, ctx.tuning.table_radius)
            if table is None:
                ctx.report(f"Crafting {item_name} needs a crafting table but none found nearby")
                return

        counts = inventory_counts(ctx.world.inventory())
        possible = limiting_count(counts, recipe.ingredients)
        if possible is not None and possible <= 0:
            missing = missing_ingredients(ctx.data, counts, recipe.ingredients)
            ctx.report(f"You do not have the resources to craft {item_name}. Missing: {missing}")
            return

        to_craft = amount if possible is None else min(amount, possible)
        try:
            await ctx.world.craft(recipe, to_craft, table)
        except WorldActionError as exc:
            ctx.report(f"Failed to craft {item_name}: {exc.cause}")
            return
        ctx.report(f"Successfully crafted {to_craft} {item_name}")


async def smelt_item(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    item_name = str_arg(args[0] if args else None)
    amount = int_arg(args[1] if len(args) > 1 else None, 1)
    ctx.report(f"Smelting {amount} {item_name}")

    furnace_block = ctx.world.find_block(FURNACE_BLOCKS, ctx.tuning.interact_radius)
    if furnace_block is None:
        ctx.report("No furnace found nearby")
        return

    items = ctx.world.inventory()
    stack = find_stack(items, item_name)
    if stack is None or held_count(items, item_name) < amount:
        ctx.report(f"Don't have enough {item_name} to smelt")
        return

    try:
        furnace = await ctx.world.open_furnace(furnace_block)
    except WorldActionError as exc:
        ctx.report(f"Failed to open furnace: {exc.cause}")
        return

    try:
        try:
            await furnace.put_input(stack.type_id, amount)
        except WorldActionError as exc:
            ctx.report(f"Failed to put item in furnace: {exc.cause}")
            return

        fuel = next((item for item in ctx.world.inventory() if item.name in FUEL_ITEMS), None)
        if fuel is None:
            ctx.report("No fuel available for smelting")
            return
        try:
            await furnace.put_fuel(fuel.type_id, 1)
        except WorldActionError as exc:
            ctx.report(f"Failed to add fuel: {exc.cause}")
            return
        ctx.report(f"Started smelting {amount} {item_name}")
    finally:
        await _close_quietly(ctx, furnace)


async def clear_furnace(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    ctx.report("Clearing furnace")
    furnace_block = ctx.world.find_block(FURNACE_BLOCKS, ctx.tuning.interact_radius)
    if furnace_block is None:
        ctx.report("No furnace found nearby")
        return

    try:
        furnace = await ctx.world.open_furnace(furnace_block)
    except WorldActionError as exc:
        ctx.report(f"Failed to open furnace: {exc.cause}")
        return

    try:
        await furnace.take_output()
        await furnace.take_fuel()
        await furnace.take_input()
    except WorldActionError as exc:
        ctx.report(f"Failed to clear furnace: {exc.cause}")
        return
    finally:
        await _close_quietly(ctx, furnace)
    ctx.report("Cleared all items from furnace")


async def _close_quietly(ctx: ActionContext, window) -> None:
    try:
        await window.close()
    except WorldActionError as exc:
        LOGGER.warning("[%s] Failed to close furnace: %s", ctx.name, exc.cause)
