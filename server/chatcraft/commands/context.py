from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatcraft.commands.parser import Arg
from chatcraft.config import Tuning
from chatcraft.session.messenger import Messenger
from chatcraft.session.state import SessionState
from chatcraft.world.connection import GameData, Goal, WorldConnection

if TYPE_CHECKING:
    from chatcraft.commands.containers import ContainerQueue


def int_arg(value: Arg | None, default: int) -> int:
    """Leading-integer coercion; anything unparseable or zero falls back to ``default``."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return int(value) or default
    text = str(value).strip()
    digits = ""
    for idx, ch in enumerate(text):
        if ch.isdigit() or (idx == 0 and ch in "+-"):
            digits += ch
        else:
            break
    try:
        return int(digits) or default
    except ValueError:
        return default


def float_arg(value: Arg | None) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def str_arg(value: Arg | None) -> str:
    return "" if value is None else str(value).strip()


def is_all(value: Arg | None) -> bool:
    return str_arg(value) in {"*", "all"}


@dataclass
class AgentControls:
    clear_chat: Callable[[], None] = lambda: None
    restart: Callable[[], None] = lambda: None


@dataclass
class ActionContext:
    world: WorldConnection
    session: SessionState
    tuning: Tuning
    messenger: Messenger
    controls: AgentControls
    containers: "ContainerQueue"
    user: str | None
    report: Callable[[str], None]
    abort_actions: Callable[[], list[str]] = lambda: []

    @property
    def data(self) -> GameData:
        return self.world.data

    @property
    def name(self) -> str:
        return self.world.username

    async def travel(self, goal: Goal) -> bool:
        """Set ``goal`` and wait (bounded) for the pathfinder to report it reached."""
        self.world.set_goal(goal)
        return await self.world.wait_for_goal(self.tuning.goal_timeout_sec)


Handler = Callable[[ActionContext, tuple[Arg, ...]], Awaitable[None]]
