from __future__ import annotations

import pytest

from chatcraft.commands.dispatcher import ActionDispatcher
from chatcraft.config import Tuning
from chatcraft.session.conversation import ConversationLog
from chatcraft.session.messenger import Messenger
from chatcraft.session.state import SessionState
from fakes import FakeData, FakeWorld

FAST = Tuning(
    follow_poll_sec=0.01,
    combat_poll_sec=0.01,
    combat_max_sec=0.3,
    goal_timeout_sec=0.1,
    container_item_delay_sec=0.0,
    give_settle_sec=0.0,
    dig_delay_sec=0.0,
    look_interval_sec=0.01,
    eat_interval_sec=0.01,
    respawn_settle_sec=0.0,
    pickup_poll_sec=0.01,
    pickup_timeout_sec=0.05,
    reconnect_delay_sec=0.0,
)


@pytest.fixture
def tuning() -> Tuning:
    return FAST


@pytest.fixture
def data() -> FakeData:
    return FakeData(
        items={
            "oak_log": 1,
            "oak_planks": 2,
            "stick": 3,
            "wooden_pickaxe": 4,
            "cobblestone": 5,
            "bread": 6,
            "golden_apple": 7,
            "rotten_flesh": 8,
            "iron_ore": 9,
            "coal": 10,
            "cooked_beef": 11,
        },
        blocks={"stone": 1, "oak_log": 2, "chest": 3, "crafting_table": 4, "furnace": 5, "white_bed": 6},
        foods={"bread": 5, "golden_apple": 4, "rotten_flesh": 4, "cooked_beef": 8},
    )


@pytest.fixture
def world(data: FakeData) -> FakeWorld:
    return FakeWorld("Steve", data)


@pytest.fixture
def session() -> SessionState:
    return SessionState(agent="Steve")


@pytest.fixture
def conversation() -> ConversationLog:
    return ConversationLog("You are Steve.")


@pytest.fixture
def messenger(world: FakeWorld) -> Messenger:
    return Messenger(world, "whisper")


@pytest.fixture
def dispatcher(world, session, tuning, messenger, conversation) -> ActionDispatcher:
    return ActionDispatcher(world, session, tuning, messenger, conversation=conversation)
