from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from chatcraft.agents.agent import Block, Ingredient, ItemStack, Recipe, Vec3
from chatcraft.commands.parser import Command, parse_commands
from chatcraft.world.connection import GoalBlock, GoalNear
from fakes import mob, player


async def run(dispatcher, text: str, user: str | None = "Alex") -> None:
    for command in parse_commands(text):
        await dispatcher.execute(command, user)


def feedback(world) -> list[str]:
    return [text for _, text in world.whispers]


@pytest.mark.asyncio
async def test_feedback_goes_to_requester_and_conversation(dispatcher, world, conversation):
    world.others = [player("Alex")]

    await run(dispatcher, "!goToPlayer(Alex)")

    assert world.whispers == [("Alex", "Going to player: Alex (distance: 2)")]
    assert conversation.messages()[-1] == {"role": "assistant", "content": "Going to player: Alex (distance: 2)"}
    assert world.goals == [GoalNear(Vec3(3, 64, 0), 2)]


@pytest.mark.asyncio
async def test_feedback_channels_can_be_switched_off(dispatcher, world, conversation):
    dispatcher.chat_feedback = False
    dispatcher.conversation_feedback = False

    await run(dispatcher, "!goToPlayer(Nobody)")

    assert world.whispers == []
    assert len(conversation) == 1


@pytest.mark.asyncio
async def test_unknown_command_is_ignored(dispatcher, world):
    await dispatcher.execute(Command("fly"), "Alex")

    assert world.whispers == []
    assert world.calls == []


@pytest.mark.asyncio
async def test_second_follow_replaces_the_first(dispatcher, world, session):
    world.others = [player("Alex"), player("Bob", x=-3, entity_id=101)]

    await run(dispatcher, "!followPlayer(Alex)")
    first = session.follow.task
    await run(dispatcher, "!followPlayer(Bob, 5)")
    second = session.follow.task
    await asyncio.sleep(0.03)

    assert first is not second
    assert first.cancelled()
    assert not second.done()
    assert session.following == "Bob"
    assert "Following player: Bob at distance: 5" in feedback(world)
    session.teardown()


@pytest.mark.asyncio
async def test_follow_stops_when_player_leaves(dispatcher, world, session):
    world.others = [player("Alex", x=20)]

    await run(dispatcher, "!followPlayer(Alex)")
    await asyncio.sleep(0.02)
    world.others = []
    await asyncio.sleep(0.05)

    assert not session.follow.active
    assert session.following is None
    assert "Lost track of Alex, stopped following" in feedback(world)


@pytest.mark.asyncio
async def test_stop_cancels_continuous_behaviours(dispatcher, world, session):
    world.others = [player("Alex")]
    await run(dispatcher, "!followPlayer(Alex)")

    await run(dispatcher, "!stop")
    await asyncio.sleep(0)

    assert not session.follow.active
    assert session.following is None
    assert world.called("stop_moving")
    assert feedback(world)[-1] == "Stopped all actions"


@pytest.mark.asyncio
async def test_stop_aborts_multi_step_actions(dispatcher, world, tuning):
    dispatcher.tuning = replace(tuning, dig_delay_sec=0.05)
    world.found_blocks["stone"] = Block("stone", Vec3(2, 63, 0))

    collecting = dispatcher.dispatch(Command("collectBlocks", ("stone", 10)), "Alex")
    await asyncio.sleep(0.07)
    digs_before_stop = len(world.called("dig"))
    goals_before_stop = len(world.goals)

    stopping = dispatcher.dispatch(Command("stop", ()), "Alex")
    await dispatcher.drain()
    await asyncio.sleep(0.1)

    assert collecting.cancelled()
    assert not stopping.cancelled()
    assert 0 < digs_before_stop < 10
    assert len(world.called("dig")) == digs_before_stop
    assert len(world.goals) == goals_before_stop
    assert feedback(world)[-1] == "Stopped all actions"
    assert "Finished collecting" not in " ".join(feedback(world))


@pytest.mark.asyncio
async def test_search_and_approach_distances_come_from_tuning(dispatcher, world, tuning):
    dispatcher.tuning = replace(tuning, entity_search_radius=32.0, melee_range=2.5, interact_radius=32.0)
    world.others = [mob("cow", x=20, entity_id=40)]

    await run(dispatcher, "!searchForEntity(cow) !attack(cow)")

    assert world.goals == [GoalNear(Vec3(20, 64, 0), 2), GoalNear(Vec3(20, 64, 0), 2.5)]
    assert "Searching for entity: cow in range: 32" in feedback(world)


@pytest.mark.asyncio
async def test_stay_stops_following(dispatcher, world, session):
    world.others = [player("Alex")]
    await run(dispatcher, "!followPlayer(Alex)")

    await run(dispatcher, "!stay(1)")

    assert session.following is None
    assert not session.follow.active
    assert session.stay.active
    assert "Staying for 1 seconds" in feedback(world)
    session.teardown()


@pytest.mark.asyncio
async def test_remembered_places(dispatcher, world, session):
    world.status.position = Vec3(10.5, 70, -4)

    await run(dispatcher, "!rememberHere(home) !goToRememberedPlace(home) !goToRememberedPlace(mine)")

    assert session.saved_places["home"] == Vec3(10.5, 70, -4)
    assert world.goals == [GoalNear(Vec3(10.5, 70, -4), 1)]
    assert 'Saved location "home" at 10.5, 70.0, -4.0' in feedback(world)
    assert "No saved place named: mine" in feedback(world)


@pytest.mark.asyncio
async def test_go_to_coordinates_requires_three_numbers(dispatcher, world):
    await run(dispatcher, "!goToCoordinates(1, north, 3) !goToCoordinates(1, 2, 3)")

    assert feedback(world) == ["Need x, y and z coordinates", "Going to coordinates: 1, 2, 3"]
    assert world.goals == [GoalNear(Vec3(1, 2, 3), 1)]


@pytest.mark.asyncio
async def test_search_for_block(dispatcher, world):
    world.found_blocks["stone"] = Block("stone", Vec3(4, 60, 4))

    await run(dispatcher, "!searchForBlock(stone, 8) !searchForBlock(unobtainium)")

    assert world.goals == [GoalBlock(Vec3(4, 60, 4))]
    assert "Unknown block type: unobtainium" in feedback(world)


@pytest.mark.asyncio
async def test_discard_everything_tosses_each_stack(dispatcher, world):
    world.items = [ItemStack("oak_log", 1, 12), ItemStack("cobblestone", 5, 64)]

    await run(dispatcher, "!discard(*)")

    assert world.called("toss") == [(1, 12), (5, 64)]
    assert "Discarding entire inventory (2 items)" in feedback(world)


@pytest.mark.asyncio
async def test_discard_everything_with_empty_inventory(dispatcher, world):
    await run(dispatcher, "!discard(all)")

    assert world.called("toss") == []
    assert feedback(world) == ["Inventory is empty"]


@pytest.mark.asyncio
async def test_discard_checks_amount(dispatcher, world):
    world.items = [ItemStack("oak_log", 1, 2)]

    await run(dispatcher, "!discard(oak_log, 5) !discard(oak_log, 2)")

    assert world.called("toss") == [(1, 2)]
    assert feedback(world)[0] == "Don't have enough oak_log to discard"


@pytest.mark.asyncio
async def test_give_player_walks_over_then_tosses(dispatcher, world):
    world.others = [player("Alex")]
    world.items = [ItemStack("bread", 6, 5)]

    await run(dispatcher, "!givePlayer(Alex, bread, 3)")

    assert world.goals == [GoalNear(Vec3(3, 64, 0), 2)]
    (looked,) = world.called("look_at")
    assert looked.y == pytest.approx(65.6)
    assert world.called("toss") == [(6, 3)]
    assert feedback(world) == ["Giving 3 bread to Alex", "Tossed 3 bread"]


@pytest.mark.asyncio
async def test_give_player_without_enough_items(dispatcher, world):
    world.others = [player("Alex")]
    world.items = [ItemStack("bread", 6, 1)]

    await run(dispatcher, "!givePlayer(Alex, bread, 3)")

    assert world.called("toss") == []
    assert feedback(world) == ["Don't have enough bread (need 3, have 1)"]


@pytest.mark.asyncio
async def test_world_rejection_inside_action_becomes_feedback(dispatcher, world):
    world.others = [player("Alex")]
    world.items = [ItemStack("bread", 6, 5)]
    world.fail["look_at"] = "not loaded"

    await run(dispatcher, "!givePlayer(Alex, bread)")

    assert world.called("toss") == []
    assert feedback(world)[-1] == "Failed to givePlayer: not loaded"


@pytest.mark.asyncio
async def test_craft_without_ingredients_does_not_call_craft(dispatcher, world, data):
    data.recipes[4] = [
        Recipe(result_id=4, result_count=1, requires_table=True, ingredients=[Ingredient(2, 3), Ingredient(3, 2)])
    ]
    world.found_blocks["crafting_table"] = Block("crafting_table", Vec3(1, 64, 1))
    world.items = [ItemStack("oak_planks", 2, 1)]

    await run(dispatcher, "!craftRecipe(wooden_pickaxe)")

    assert world.called("craft") == []
    assert feedback(world)[-1] == (
        "You do not have the resources to craft wooden_pickaxe. "
        "Missing: oak_planks: need 3, have 1, stick: need 2, have 0"
    )


@pytest.mark.asyncio
async def test_craft_is_limited_by_ingredients(dispatcher, world, data):
    data.recipes[2] = [Recipe(result_id=2, result_count=4, requires_table=False, ingredients=[Ingredient(1, 1)])]
    world.items = [ItemStack("oak_log", 1, 3)]

    await run(dispatcher, "!craftRecipe(oak_planks, 5)")

    assert world.called("craft") == [(2, 3, None)]
    assert feedback(world) == ["Attempting to craft 5 oak_planks", "Successfully crafted 3 oak_planks"]


@pytest.mark.asyncio
async def test_craft_needs_a_table_when_recipe_requires_one(dispatcher, world, data):
    data.recipes[4] = [Recipe(result_id=4, result_count=1, requires_table=True, ingredients=[Ingredient(2, 3)])]
    world.items = [ItemStack("oak_planks", 2, 3)]

    await run(dispatcher, "!craftRecipe(wooden_pickaxe)")

    assert world.called("craft") == []
    assert feedback(world)[-1] == "Crafting wooden_pickaxe needs a crafting table but none found nearby"


@pytest.mark.asyncio
async def test_crafts_run_one_at_a_time(dispatcher, world, data, session):
    data.recipes[2] = [Recipe(result_id=2, result_count=4, requires_table=False, ingredients=[Ingredient(1, 1)])]
    world.items = [ItemStack("oak_log", 1, 8)]
    inside = []
    overlap = []

    async def slow_craft(recipe, count, table):
        overlap.append(len(inside))
        inside.append(count)
        await asyncio.sleep(0.01)
        inside.pop()

    world.craft = slow_craft
    dispatcher.dispatch(Command("craftRecipe", ("oak_planks", 1)), "Alex")
    dispatcher.dispatch(Command("craftRecipe", ("oak_planks", 2)), "Alex")
    await dispatcher.drain()

    assert overlap == [0, 0]
    assert not session.craft_lock.locked()


@pytest.mark.asyncio
async def test_smelt_item_loads_input_and_fuel(dispatcher, world):
    world.found_blocks["furnace"] = Block("furnace", Vec3(1, 64, 0))
    world.items = [ItemStack("iron_ore", 9, 4), ItemStack("coal", 10, 2)]

    await run(dispatcher, "!smeltItem(iron_ore, 3)")

    (furnace,) = world.furnaces
    assert furnace.calls == [("put_input", (9, 3)), ("put_fuel", (10, 1))]
    assert furnace.closed
    assert feedback(world)[-1] == "Started smelting 3 iron_ore"


@pytest.mark.asyncio
async def test_collect_blocks_digs_until_count(dispatcher, world):
    world.found_blocks["stone"] = Block("stone", Vec3(2, 63, 0))

    await run(dispatcher, "!collectBlocks(stone, 3)")

    assert len(world.called("dig")) == 3
    assert feedback(world)[-1] == "Finished collecting 3 stone"


@pytest.mark.asyncio
async def test_collect_blocks_gives_up_when_unreachable(dispatcher, world):
    world.found_blocks["stone"] = Block("stone", Vec3(2, 63, 0))
    world.goal_reached = False

    await run(dispatcher, "!collectBlocks(stone, 3)")

    assert world.called("dig") == []
    assert feedback(world)[-1] == "Could not reach stone at (2, 63, 0)"


@pytest.mark.asyncio
async def test_dig_down_stops_above_lava(dispatcher, world):
    world.blocks[(0, 63, 0)] = "lava"

    await run(dispatcher, "!digDown(3)")

    assert world.called("dig") == []
    assert feedback(world)[-1] == "Stopped digging - found lava"


@pytest.mark.asyncio
async def test_go_to_bed(dispatcher, world):
    world.found_blocks["white_bed"] = Block("white_bed", Vec3(5, 64, 5))

    await run(dispatcher, "!goToBed")

    assert world.called("sleep") == [Block("white_bed", Vec3(5, 64, 5))]
    assert feedback(world) == ["Going to bed", "Sleeping in bed"]


@pytest.mark.asyncio
async def test_attack_strikes_nearest_mob_once(dispatcher, world):
    world.others = [mob("zombie", x=5, entity_id=7), mob("zombie", x=2, entity_id=8)]

    await run(dispatcher, "!attack(zombie)")

    assert world.called("attack") == [8]
    assert feedback(world) == ["Attacking nearest zombie"]


@pytest.mark.asyncio
async def test_attack_player_runs_in_combat_slot(dispatcher, world, session):
    world.others = [player("Alex", x=2, entity_id=55)]

    await run(dispatcher, "!attackPlayer(Alex)")
    assert session.combat_target == 55
    await session.combat.task

    assert world.called("attack")
    assert session.combat_target is None
    assert feedback(world)[-1] == "Stopped attacking Alex"


@pytest.mark.asyncio
async def test_restart_and_clear_chat_use_agent_controls(dispatcher):
    calls = []
    dispatcher.controls.clear_chat = lambda: calls.append("clear")
    dispatcher.controls.restart = lambda: calls.append("restart")

    await run(dispatcher, "!clearChat !restart")

    assert calls == ["clear", "restart"]
