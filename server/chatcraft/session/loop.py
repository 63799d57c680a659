from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from chatcraft.commands.dispatcher import ActionDispatcher
from chatcraft.commands.parser import Command, action_commands, parse_commands, query_commands
from chatcraft.commands.queries import QueryResolver
from chatcraft.session.conversation import ConversationLog
from chatcraft.session.messenger import Messenger

LOGGER = logging.getLogger("chatcraft.session.loop")

FALLBACK_REPLY = "My brain disconnected, try again."
MAX_REPROMPTS = 3
EXECUTED_MARKER = "Executed commands: {reply}"


class ChatModel(Protocol):
    async def complete(self, messages: list[dict[str, str]]) -> str | None: ...


class TurnPhase(str, Enum):
    AWAIT_REPLY = "await_reply"
    SCAN_FOR_QUERIES = "scan_for_queries"
    RESOLVE_QUERIES = "resolve_queries"
    AWAIT_FINAL_REPLY = "await_final_reply"
    SCAN_FOR_ACTIONS_IN_FINAL = "scan_for_actions_in_final"
    EXECUTE_AND_REPROMPT = "execute_and_reprompt"
    DELIVER = "deliver"


@dataclass
class TurnOutcome:
    sender: str | None
    message: str
    reply: str = ""
    phases: list[TurnPhase] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    model_calls: int = 0
    reprompts: int = 0

    def to_payload(self) -> dict:
        return {
            "sender": self.sender,
            "message": self.message,
            "reply": self.reply,
            "phases": [phase.value for phase in self.phases],
            "queries": list(self.queries),
            "actions": list(self.actions),
            "model_calls": self.model_calls,
            "reprompts": self.reprompts,
        }


class ResolutionLoop:
    """Runs one user turn: model reply, query round, bounded re-prompts, delivery.

    Query results are written to the log as assistant content only, so the model
    treats them as things it already knows. Turns for one agent are serialised.
    """

    def __init__(
        self,
        name: str,
        model: ChatModel,
        conversation: ConversationLog,
        queries: QueryResolver,
        dispatcher: ActionDispatcher,
        messenger: Messenger,
        max_reprompts: int = MAX_REPROMPTS,
    ) -> None:
        self.name = name
        self.model = model
        self.conversation = conversation
        self.queries = queries
        self.dispatcher = dispatcher
        self.messenger = messenger
        self.max_reprompts = max_reprompts
        self._turn_lock = asyncio.Lock()

    async def handle(
        self,
        sender: str | None,
        message: str,
        recipients: list[str] | None = None,
    ) -> TurnOutcome:
        """Process ``message`` from ``sender``; replies go to ``recipients`` when given."""
        async with self._turn_lock:
            return await self._run_turn(sender, message, recipients)

    async def _run_turn(self, sender: str | None, message: str, recipients: list[str] | None) -> TurnOutcome:
        outcome = TurnOutcome(sender=sender, message=message)
        requester = sender or (recipients[0] if recipients else None)
        LOGGER.info("[%s] Request received from %s: %s", self.name, sender or "system", message)

        self._enter(outcome, TurnPhase.AWAIT_REPLY)
        self.conversation.append("user", message)
        reply = await self._complete(outcome)
        self.conversation.append("assistant", reply)

        self._enter(outcome, TurnPhase.SCAN_FOR_QUERIES)
        commands = parse_commands(reply)
        queries = query_commands(commands)
        if not queries:
            self._deliver(outcome, reply, sender, recipients)
            self._dispatch(outcome, action_commands(commands), requester)
            return outcome

        self._enter(outcome, TurnPhase.RESOLVE_QUERIES)
        for query in queries:
            result = await self.queries.resolve(query)
            outcome.queries.append(query.name)
            if result is None:
                continue
            LOGGER.info("[%s] Query result (%s): %s", self.name, query.name, result.text)
            self.conversation.append("assistant", result.render())

        self._enter(outcome, TurnPhase.AWAIT_FINAL_REPLY)
        final = await self._complete(outcome)

        self._enter(outcome, TurnPhase.SCAN_FOR_ACTIONS_IN_FINAL)
        while outcome.reprompts < self.max_reprompts:
            actions = action_commands(parse_commands(final))
            if not actions:
                break
            self._enter(outcome, TurnPhase.EXECUTE_AND_REPROMPT)
            LOGGER.info("[%s] Final reply contains command(s), executing: %s", self.name, final)
            self._dispatch(outcome, actions, requester)
            self.conversation.append("assistant", EXECUTED_MARKER.format(reply=final))
            final = await self._complete(outcome)
            outcome.reprompts += 1
        else:
            if action_commands(parse_commands(final)):
                LOGGER.warning(
                    "[%s] Re-prompt limit (%d) reached; delivering reply as-is", self.name, self.max_reprompts
                )

        self.conversation.append("assistant", final)
        self._deliver(outcome, final, sender, recipients)
        return outcome

    async def _complete(self, outcome: TurnOutcome) -> str:
        outcome.model_calls += 1
        try:
            text = await self.model.complete(self.conversation.messages())
        except Exception:
            LOGGER.exception("[%s] Model call failed", self.name)
            text = None
        text = (text or "").strip()
        if not text:
            LOGGER.warning("[%s] Empty or failed completion, using fallback reply", self.name)
            return FALLBACK_REPLY
        return text

    def _deliver(
        self,
        outcome: TurnOutcome,
        text: str,
        sender: str | None,
        recipients: list[str] | None,
    ) -> None:
        self._enter(outcome, TurnPhase.DELIVER)
        outcome.reply = text
        if recipients:
            for recipient in recipients:
                self.messenger.send(recipient, text)
        else:
            self.messenger.send(sender, text)
        LOGGER.info("[%s] Responded to %s: %s", self.name, sender or "everyone", text)

    def _dispatch(self, outcome: TurnOutcome, commands: list[Command], requester: str | None) -> None:
        for command in commands:
            outcome.actions.append(command.text())
            self.dispatcher.dispatch(command, requester)

    @staticmethod
    def _enter(outcome: TurnOutcome, phase: TurnPhase) -> None:
        outcome.phases.append(phase)
