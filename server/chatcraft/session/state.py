from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, Deque

from chatcraft.agents.agent import ItemStack, Vec3

LOGGER = logging.getLogger("chatcraft.session.state")


class TimerSlot:
    """Holds at most one running behaviour task for one concern.

    Starting a new task cancels the one already held, so a slot can never
    accumulate orphaned timers.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        self.cancel()
        task = asyncio.create_task(coro, name=f"slot:{self.name}")
        self._task = task
        task.add_done_callback(self._on_done)
        return task

    def cancel(self) -> bool:
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _on_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Behaviour %s crashed", self.name, exc_info=exc)


@dataclass
class ContainerOp:
    kind: str  # "deposit" | "withdraw" | "view"
    item: str | None
    amount: int
    requesting_user: str | None
    result: asyncio.Future | None = None
    stacks: list[ItemStack] | None = None


@dataclass
class PendingAction:
    command: str
    requesting_user: str | None
    issued_at: float = field(default_factory=time.time)

    def to_payload(self) -> dict:
        return {
            "command": self.command,
            "requesting_user": self.requesting_user,
            "issued_at": round(self.issued_at, 3),
        }


@dataclass
class SessionState:
    agent: str
    saved_places: dict[str, Vec3] = field(default_factory=dict)
    following: str | None = None
    follow: TimerSlot = field(default_factory=lambda: TimerSlot("follow"))
    combat: TimerSlot = field(default_factory=lambda: TimerSlot("combat"))
    idle: TimerSlot = field(default_factory=lambda: TimerSlot("idle"))
    stay: TimerSlot = field(default_factory=lambda: TimerSlot("stay"))
    recovery: TimerSlot = field(default_factory=lambda: TimerSlot("recovery"))
    combat_target: int | None = None
    chest_queue: Deque[ContainerOp] = field(default_factory=deque)
    chest_draining: bool = False
    craft_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    eating: bool = False
    death_position: Vec3 | None = None
    pending: list[PendingAction] = field(default_factory=list)

    def continuous_slots(self) -> tuple[TimerSlot, ...]:
        return (self.follow, self.combat, self.stay, self.recovery)

    def cancel_continuous(self) -> list[str]:
        """Cancel every user-abortable behaviour; returns the names that were running."""
        stopped = [slot.name for slot in self.continuous_slots() if slot.cancel()]
        self.following = None
        self.combat_target = None
        return stopped

    def teardown(self) -> None:
        self.cancel_continuous()
        self.idle.cancel()

    def to_payload(self) -> dict:
        return {
            "agent": self.agent,
            "saved_places": {name: pos.to_dict() for name, pos in self.saved_places.items()},
            "following": self.following,
            "active": [slot.name for slot in (*self.continuous_slots(), self.idle) if slot.active],
            "combat_target": self.combat_target,
            "chest_queue": len(self.chest_queue),
            "chest_draining": self.chest_draining,
            "crafting": self.craft_lock.locked(),
            "eating": self.eating,
            "death_position": self.death_position.to_dict() if self.death_position else None,
            "pending": [action.to_payload() for action in self.pending],
        }


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def get(self, agent: str) -> SessionState:
        session = self._sessions.get(agent)
        if session is None:
            session = SessionState(agent=agent)
            self._sessions[agent] = session
        return session
