from __future__ import annotations

import asyncio
import logging

from chatcraft.commands import blocks, combat, crafting, inventory, navigation
from chatcraft.commands.containers import ContainerQueue, put_in_chest, take_from_chest
from chatcraft.commands.context import ActionContext, AgentControls, Handler, str_arg
from chatcraft.commands.parser import Arg, Command, parse_commands
from chatcraft.config import Tuning
from chatcraft.session.conversation import ConversationLog
from chatcraft.session.messenger import Messenger
from chatcraft.session.state import PendingAction, SessionState
from chatcraft.world.connection import WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.commands.dispatcher")

HELP_TEXT = (
    "Available commands: !stats, !inventory, !nearbyBlocks, !entities, !goToPlayer, "
    "!followPlayer, !craftRecipe, !putInChest, !takeFromChest, !stop, and many more!"
)


async def _help(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    ctx.report(HELP_TEXT)


async def _stop(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    aborted = ctx.abort_actions()
    ctx.world.stop_moving()
    stopped = ctx.session.cancel_continuous() + aborted
    LOGGER.info("[%s] Stopping all actions (cancelled: %s)", ctx.name, ", ".join(stopped) or "none")
    ctx.report("Stopped all actions")


async def _restart(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    LOGGER.info("[%s] Leave/disconnect requested by command", ctx.name)
    ctx.controls.restart()


async def _clear_chat(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    LOGGER.info("[%s] Clearing chat history", ctx.name)
    ctx.controls.clear_chat()


async def _start_conversation(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    target = str_arg(args[0] if args else None)
    message = str_arg(args[1] if len(args) > 1 else None)
    if not target or not message:
        ctx.report("Need a player name and a message to start a conversation")
        return
    ctx.report(f"Starting conversation with {target}: {message}")
    ctx.messenger.send(target, message)


class ActionDispatcher:
    """Turns parsed action commands into world operations for one agent."""

    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        tuning: Tuning,
        messenger: Messenger,
        conversation: ConversationLog | None = None,
        controls: AgentControls | None = None,
        chat_feedback: bool = True,
        conversation_feedback: bool = True,
    ) -> None:
        self.world = world
        self.session = session
        self.tuning = tuning
        self.messenger = messenger
        self.conversation = conversation
        self.controls = controls or AgentControls()
        self.chat_feedback = chat_feedback
        self.conversation_feedback = conversation_feedback
        self.containers = ContainerQueue(world, session, tuning, self.report)
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, Handler] = {
            "help": _help,
            "stop": _stop,
            "restart": _restart,
            "clearChat": _clear_chat,
            "startConversation": _start_conversation,
            "goToPlayer": navigation.go_to_player,
            "followPlayer": navigation.follow_player,
            "goToCoordinates": navigation.go_to_coordinates,
            "searchForBlock": navigation.search_for_block,
            "searchForEntity": navigation.search_for_entity,
            "moveAway": navigation.move_away,
            "rememberHere": navigation.remember_here,
            "savedPlaces": navigation.saved_places,
            "goToRememberedPlace": navigation.go_to_remembered_place,
            "stay": navigation.stay,
            "givePlayer": inventory.give_player,
            "consume": inventory.consume,
            "equip": inventory.equip,
            "discard": inventory.discard,
            "placeHere": inventory.place_here,
            "putInChest": put_in_chest,
            "takeFromChest": take_from_chest,
            "craftRecipe": crafting.craft_recipe,
            "smeltItem": crafting.smelt_item,
            "clearFurnace": crafting.clear_furnace,
            "collectBlocks": blocks.collect_blocks,
            "digDown": blocks.dig_down,
            "goToBed": blocks.go_to_bed,
            "activate": blocks.activate,
            "attack": combat.attack,
            "attackPlayer": combat.attack_player,
        }

    def report(self, user: str | None, message: str) -> None:
        LOGGER.info("[%s] %s", self.world.username, message)
        if self.chat_feedback:
            self.messenger.send(user, message)
        if self.conversation_feedback and self.conversation is not None:
            self.conversation.append("assistant", message)

    def context(self, user: str | None) -> ActionContext:
        return ActionContext(
            world=self.world,
            session=self.session,
            tuning=self.tuning,
            messenger=self.messenger,
            controls=self.controls,
            containers=self.containers,
            user=user,
            report=lambda message: self.report(user, message),
            abort_actions=lambda: self.abort(keep=asyncio.current_task()),
        )

    async def execute(self, command: Command, requesting_user: str | None) -> None:
        handler = self._handlers.get(command.name)
        if handler is None:
            LOGGER.info("[%s] Unknown command ignored: %s", self.world.username, command.name)
            return

        pending = PendingAction(command=command.text(), requesting_user=requesting_user)
        self.session.pending.append(pending)
        ctx = self.context(requesting_user)
        try:
            await handler(ctx, command.args)
        except WorldActionError as exc:
            ctx.report(f"Failed to {command.name}: {exc.cause}")
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("[%s] Action %s crashed", self.world.username, command.text())
        finally:
            if pending in self.session.pending:
                self.session.pending.remove(pending)

    def dispatch(self, command: Command, requesting_user: str | None) -> asyncio.Task:
        task = asyncio.create_task(self.execute(command, requesting_user), name=f"action:{command.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def abort(self, keep: asyncio.Task | None = None) -> list[str]:
        """Cancel in-flight actions other than ``keep``; returns the cancelled command names."""
        aborted = []
        for task in list(self._tasks):
            if task is keep or task.done():
                continue
            task.cancel()
            aborted.append(task.get_name().removeprefix("action:"))
        return aborted

    def dispatch_text(self, text: str, requesting_user: str | None) -> list[Command]:
        commands = parse_commands(text)
        for command in commands:
            self.dispatch(command, requesting_user)
        return commands

    async def drain(self) -> None:
        """Wait for every dispatched action (not the continuous behaviours they start)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
