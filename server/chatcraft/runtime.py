from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from chatcraft.behaviors.presence import AutoLook, IdleTrigger
from chatcraft.behaviors.survival import AutoDefense, AutoEat, DeathReturn
from chatcraft.commands.context import AgentControls
from chatcraft.commands.dispatcher import ActionDispatcher
from chatcraft.commands.queries import QueryResolver
from chatcraft.config import BotConfig, ServerConfig, Tuning, persona_prompt, resolve_api_key
from chatcraft.llm.client import LLMClient
from chatcraft.session.conversation import ConversationLog
from chatcraft.session.loop import ChatModel, ResolutionLoop, TurnOutcome
from chatcraft.session.messenger import Messenger
from chatcraft.session.state import SessionRegistry, TimerSlot
from chatcraft.world.connection import WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.runtime")

ConversationListener = Callable[[str, dict[str, str]], None]

# world events that count as "something happened" for the idle countdown
ACTIVITY_EVENTS = ("goal_reached", "path_update", "diggingCompleted")


class BotRunner:
    """One configured agent: its world connection, session, conversation and behaviours."""

    def __init__(
        self,
        server: ServerConfig,
        bot: BotConfig,
        prompt_template: str,
        tuning: Tuning,
        sessions: SessionRegistry,
        world: WorldConnection,
        model: ChatModel,
        listener: ConversationListener | None = None,
    ) -> None:
        self.server = server
        self.config = bot
        self.tuning = tuning
        self.world = world
        self.model = model
        self.name = bot.username
        self.session = sessions.get(bot.username)

        path = Path(server.conversations_dir) / f"{bot.username}.json" if bot.save_conversation else None
        self.conversation = ConversationLog.open(persona_prompt(prompt_template, bot), path)
        if listener is not None:
            self.conversation.listener = lambda message: listener(self.name, message)

        self.chat_mode = server.effective_chat_mode(bot)
        self.messenger = Messenger(world, self.chat_mode)
        self.dispatcher = ActionDispatcher(
            world,
            self.session,
            tuning,
            self.messenger,
            conversation=self.conversation,
            controls=AgentControls(clear_chat=self.clear_chat, restart=self.restart),
            chat_feedback=bot.action_chat_feedback,
            conversation_feedback=bot.action_conversation_feedback,
        )
        self.queries = QueryResolver(world, self.session, view_chest=self.dispatcher.containers.view)
        self.loop = ResolutionLoop(
            bot.username, model, self.conversation, self.queries, self.dispatcher, self.messenger
        )

        self.idle = IdleTrigger(self.session, bot.idle_timeout_sec, self._idle_turn)
        self.look = AutoLook(world, tuning)
        self.eat = AutoEat(world, self.session, tuning, self.messenger)
        self.defense = AutoDefense(
            world, self.session, tuning, self.messenger, include_players=bot.defend_against_players
        )
        self.death = DeathReturn(world, self.session, tuning, self.messenger)
        self._look_slot = TimerSlot("look")
        self._eat_slot = TimerSlot("eat")

        self.connected = False
        self._behaviours_running = False
        self._reconnect_attempted = False
        self._stopping = False
        self._reconnect_task: asyncio.Task | None = None
        self._turns: set[asyncio.Task] = set()
        self._register_events()

    def _register_events(self) -> None:
        self.world.on("login", self._on_login)
        self.world.on("spawn", self._on_spawn)
        self.world.on("death", self._on_death)
        self.world.on("end", self._on_end)
        self.world.on("kicked", self._on_kicked)
        self.world.on("error", self._on_error)
        self.world.on("chat", self._on_chat)
        self.world.on("whisper", self._on_whisper)
        self.world.on("hurt", self._on_hurt)
        for event in ACTIVITY_EVENTS:
            self.world.on(event, self._on_activity)

    # lifecycle

    async def start(self) -> None:
        self._stopping = False
        await self.world.connect()

    async def stop(self) -> None:
        self._stopping = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
        self.stop_behaviours()
        for task in list(self._turns):
            task.cancel()
        if self._turns:
            await asyncio.gather(*self._turns, return_exceptions=True)
        self.conversation.flush()
        if self.connected:
            self.world.quit()
        self.connected = False

    def start_behaviours(self) -> None:
        if self._behaviours_running:
            return
        self._behaviours_running = True
        if self.config.look_at_player:
            self._look_slot.start(self.look.run())
        if self.config.auto_eat:
            self._eat_slot.start(self.eat.run())
        self.idle.reset()
        LOGGER.info("[%s] Behaviours started", self.name)

    def stop_behaviours(self) -> None:
        self._look_slot.cancel()
        self._eat_slot.cancel()
        self.idle.stop()
        self.session.teardown()
        self._behaviours_running = False

    # controls reachable from !clearChat and !restart

    def clear_chat(self) -> None:
        self.conversation.clear()
        LOGGER.info("[%s] Conversation history cleared.", self.name)

    def restart(self) -> None:
        LOGGER.info("[%s] Leave/disconnect requested by command.", self.name)
        self.conversation.flush()
        self.world.quit()

    # inbound chat

    def handle_incoming(self, username: str, message: str) -> asyncio.Task | None:
        if username == self.name:
            return None
        if not self.config.allows(username):
            LOGGER.info("[%s] Ignoring %s (not in allowed users)", self.name, username)
            return None
        self.idle.reset()
        return self._track(self.loop.handle(username, message))

    async def converse(self, username: str, message: str) -> TurnOutcome:
        self.idle.reset()
        return await self.loop.handle(username, message)

    async def _idle_turn(self) -> TurnOutcome:
        recipients = list(self.config.allowed_users) or None
        return await self.loop.handle(None, self.config.idle_message, recipients=recipients)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"turn:{self.name}")
        self._turns.add(task)
        task.add_done_callback(self._turn_done)
        return task

    def _turn_done(self, task: asyncio.Task) -> None:
        self._turns.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("[%s] Turn crashed", self.name, exc_info=exc)

    # world events

    def _on_login(self) -> None:
        self.connected = True
        self._reconnect_attempted = False
        LOGGER.info("[%s] Logged in", self.name)
        if self.server.init_message:
            self.world.chat(self.server.init_message)

    def _on_spawn(self) -> None:
        self.start_behaviours()
        if self.config.return_on_death and self.session.death_position is not None:
            self.death.on_respawn()

    def _on_death(self) -> None:
        self.session.cancel_continuous()
        if self.config.return_on_death:
            self.death.on_death()

    def _on_chat(self, username: str, message: str) -> None:
        if self.chat_mode != "public":
            return
        self.handle_incoming(username, message)

    def _on_whisper(self, username: str, message: str) -> None:
        LOGGER.info("[%s] Whisper received from %s: %s", self.name, username, message)
        self.handle_incoming(username, message)

    def _on_hurt(self) -> None:
        self.idle.reset()
        if self.config.auto_defend:
            self.defense.on_hurt()

    def _on_activity(self, *args) -> None:
        self.idle.reset()

    def _on_kicked(self, reason: str) -> None:
        LOGGER.warning("[%s] Kicked: %s", self.name, reason)

    def _on_error(self, error: str) -> None:
        if not self._reconnect_attempted:
            LOGGER.error("[%s] Error: %s", self.name, error)

    def _on_end(self, reason: str) -> None:
        self.connected = False
        self.stop_behaviours()
        LOGGER.info("[%s] Disconnected%s", self.name, f": {reason}" if reason else ".")
        if self._stopping:
            return
        if self._reconnect_attempted:
            LOGGER.error("[%s] Couldn't reconnect: previous attempt failed.", self.name)
            return
        self._reconnect_attempted = True
        LOGGER.info("[%s] Attempting reconnect in %g seconds...", self.name, self.tuning.reconnect_delay_sec)
        self._reconnect_task = asyncio.create_task(self._reconnect(), name=f"reconnect:{self.name}")

    async def _reconnect(self) -> None:
        await asyncio.sleep(self.tuning.reconnect_delay_sec)
        try:
            await self.world.connect()
        except WorldActionError as exc:
            LOGGER.error("[%s] Couldn't reconnect: %s", self.name, exc.cause)

    def status_payload(self) -> dict:
        return {
            "name": self.name,
            "provider": self.config.provider,
            "model": self.config.model,
            "connected": self.connected,
            "chat_mode": self.chat_mode,
            "conversation_length": len(self.conversation),
            "session": self.session.to_payload(),
        }


class Fleet:
    """Every configured agent, keyed by username."""

    def __init__(self) -> None:
        self.sessions = SessionRegistry()
        self._runners: dict[str, BotRunner] = {}

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        prompt_template: str,
        tuning: Tuning,
        keys: dict,
        listener: ConversationListener | None = None,
        world_factory: Callable[[BotConfig], WorldConnection] | None = None,
        model_factory: Callable[[BotConfig], ChatModel] | None = None,
    ) -> "Fleet":
        fleet = cls()
        for bot in config.bots:
            if bot.username in fleet._runners:
                LOGGER.error("Duplicate bot username %s in config, skipping", bot.username)
                continue
            world = world_factory(bot) if world_factory else _mineflayer_world(config, bot)
            model = model_factory(bot) if model_factory else _llm_client(bot, keys)
            fleet.add(BotRunner(config, bot, prompt_template, tuning, fleet.sessions, world, model, listener))
        return fleet

    def add(self, runner: BotRunner) -> None:
        self._runners[runner.name] = runner

    def get(self, name: str) -> BotRunner | None:
        return self._runners.get(name)

    def runners(self) -> list[BotRunner]:
        return [self._runners[name] for name in sorted(self._runners)]

    def names(self) -> list[str]:
        return sorted(self._runners)

    async def start_all(self) -> None:
        for runner in self.runners():
            try:
                await runner.start()
            except WorldActionError as exc:
                LOGGER.error("[%s] Failed to connect: %s", runner.name, exc.cause)

    async def stop_all(self) -> None:
        for runner in self.runners():
            await runner.stop()


def _mineflayer_world(config: ServerConfig, bot: BotConfig) -> WorldConnection:
    from chatcraft.world.mineflayer import MineflayerWorld

    return MineflayerWorld(bot.username, config.host, config.port, config.minecraft_version)


def _llm_client(bot: BotConfig, keys: dict) -> LLMClient:
    api_key = resolve_api_key(bot.provider, keys)
    if not api_key:
        LOGGER.error("[%s] No API key found for provider '%s'", bot.username, bot.provider)
    return LLMClient.for_provider(bot.provider, bot.model, api_key, max_output_tokens=bot.max_tokens)
