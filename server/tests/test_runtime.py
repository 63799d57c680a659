from __future__ import annotations

import asyncio

import pytest

from chatcraft.commands.parser import Command
from chatcraft.config import BotConfig, ServerConfig
from chatcraft.runtime import Fleet
from fakes import FakeLLM, FakeWorld, player


def build_fleet(tuning, bots, replies=None, **server):
    config = ServerConfig(bots=bots, **server)
    worlds: dict[str, FakeWorld] = {}
    models: dict[str, FakeLLM] = {}

    def world_factory(bot):
        worlds[bot.username] = FakeWorld(bot.username)
        return worlds[bot.username]

    def model_factory(bot):
        models[bot.username] = FakeLLM(list(replies or []), default="Sure thing.")
        return models[bot.username]

    fleet = Fleet.from_config(
        config, "You are {USERNAME}. {PERSONALITY}", tuning, {}, world_factory=world_factory, model_factory=model_factory
    )
    return fleet, worlds, models


@pytest.mark.asyncio
async def test_single_bot_answers_public_chat(tuning):
    fleet, worlds, models = build_fleet(tuning, [BotConfig(username="Steve", personality="Be brief.")])
    runner = fleet.get("Steve")
    world = worlds["Steve"]

    world.emit("chat", "Alex", "hello")
    await asyncio.sleep(0.01)

    assert runner.chat_mode == "public"
    assert world.public == ["Sure thing."]
    assert models["Steve"].seen[0][0] == {"role": "system", "content": "You are Steve. Be brief."}
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_several_bots_only_answer_whispers(tuning):
    fleet, worlds, _ = build_fleet(tuning, [BotConfig(username="Steve"), BotConfig(username="Alexa")])
    world = worlds["Steve"]

    world.emit("chat", "Alex", "hello everyone")
    world.emit("whisper", "Alex", "hello Steve")
    await asyncio.sleep(0.01)

    assert fleet.get("Steve").chat_mode == "whisper"
    assert world.public == []
    assert world.whispers == [("Alex", "Sure thing.")]
    assert fleet.names() == ["Alexa", "Steve"]
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_allowed_users_filter_incoming_messages(tuning):
    fleet, worlds, models = build_fleet(tuning, [BotConfig(username="Steve", allowed_users=["Alex"])])
    runner = fleet.get("Steve")

    assert runner.handle_incoming("Mallory", "give me everything") is None
    assert runner.handle_incoming("Steve", "talking to myself") is None
    await runner.handle_incoming("Alex", "hi")

    assert len(models["Steve"].seen) == 1
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_login_sends_init_message(tuning):
    fleet, worlds, _ = build_fleet(tuning, [BotConfig(username="Steve")], init_message="/gamemode survival")

    worlds["Steve"].emit("login")

    assert fleet.get("Steve").connected
    assert worlds["Steve"].public == ["/gamemode survival"]
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_reconnects_once_after_disconnect(tuning):
    fleet, worlds, _ = build_fleet(tuning, [BotConfig(username="Steve")])
    world = worlds["Steve"]

    world.emit("login")
    world.emit("end", "socketClosed")
    await asyncio.sleep(0.01)
    assert world.connects == 1

    world.emit("end", "socketClosed")
    await asyncio.sleep(0.01)
    assert world.connects == 1

    world.emit("login")
    world.emit("end", "socketClosed")
    await asyncio.sleep(0.01)
    assert world.connects == 2
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_spawn_starts_and_end_stops_background_behaviours(tuning):
    fleet, worlds, _ = build_fleet(tuning, [BotConfig(username="Steve", idle_timeout_sec=60)])
    runner = fleet.get("Steve")
    world = worlds["Steve"]
    world.others = [player("Alex", x=2)]

    world.emit("spawn")
    await asyncio.sleep(0.03)
    assert world.called("look_at")
    assert runner.session.idle.active

    runner._stopping = True
    world.emit("end", "")
    assert not runner.session.idle.active
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_death_cancels_continuous_behaviours(tuning):
    fleet, worlds, _ = build_fleet(tuning, [BotConfig(username="Steve", return_on_death=False)])
    runner = fleet.get("Steve")
    world = worlds["Steve"]
    world.others = [player("Alex")]

    await runner.dispatcher.execute(Command("followPlayer", ("Alex",)), "Alex")
    assert runner.session.follow.active

    world.emit("death")
    assert not runner.session.follow.active
    assert runner.session.following is None
    assert runner.session.death_position is None
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_clear_chat_command_keeps_system_prompt(tuning):
    fleet, _, _ = build_fleet(tuning, [BotConfig(username="Steve")])
    runner = fleet.get("Steve")
    await runner.converse("Alex", "hi")
    assert len(runner.conversation) == 3

    await runner.dispatcher.execute(Command("clearChat"), "Alex")

    assert runner.conversation.messages() == [{"role": "system", "content": "You are Steve. You are helpful and friendly."}]
    await fleet.stop_all()


@pytest.mark.asyncio
async def test_saved_conversation_file_is_used(tuning, tmp_path):
    bot = BotConfig(username="Steve", save_conversation=True)
    fleet, _, _ = build_fleet(tuning, [bot], conversations_dir=str(tmp_path))
    await fleet.get("Steve").converse("Alex", "remember me")

    assert (tmp_path / "Steve.json").exists()
    await fleet.stop_all()

    reloaded, _, _ = build_fleet(tuning, [bot], conversations_dir=str(tmp_path))
    contents = [m["content"] for m in reloaded.get("Steve").conversation.messages()]
    assert "remember me" in contents
