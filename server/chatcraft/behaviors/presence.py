from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from chatcraft.agents.movement import nearest
from chatcraft.config import Tuning
from chatcraft.session.state import SessionState
from chatcraft.world.connection import WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.behaviors.presence")


class IdleTrigger:
    """Fires ``on_idle`` once nothing has happened for ``timeout_sec`` seconds.

    Every call to :meth:`reset` restarts the countdown in the session's idle slot.
    After firing, the countdown is re-armed once the idle turn has finished. A
    timeout of zero disables the trigger.
    """

    def __init__(
        self,
        session: SessionState,
        timeout_sec: float,
        on_idle: Callable[[], Awaitable[object]],
    ) -> None:
        self.session = session
        self.timeout_sec = timeout_sec
        self.on_idle = on_idle
        self._firing: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.timeout_sec > 0

    def reset(self) -> None:
        if not self.enabled:
            return
        self.session.idle.start(self._countdown())

    def stop(self) -> None:
        self.session.idle.cancel()
        if self._firing is not None and not self._firing.done():
            self._firing.cancel()
        self._firing = None

    async def _countdown(self) -> None:
        await asyncio.sleep(self.timeout_sec)
        if self._firing is not None and not self._firing.done():
            LOGGER.debug("[%s] Idle turn still running, not prompting again", self.session.agent)
            return
        LOGGER.info("[%s] Idle for %.0fs, prompting", self.session.agent, self.timeout_sec)
        # the idle turn runs outside the idle slot so re-arming does not cancel it
        self._firing = asyncio.create_task(self._fire(), name="idle-turn")

    async def _fire(self) -> None:
        try:
            await self.on_idle()
        except Exception:
            LOGGER.exception("[%s] Idle turn failed", self.session.agent)
        self.reset()


class AutoLook:
    """Turns the agent's head toward the nearest other player in range."""

    def __init__(self, world: WorldConnection, tuning: Tuning) -> None:
        self.world = world
        self.tuning = tuning

    async def tick(self) -> bool:
        me = self.world.telemetry().position
        others = [
            entity
            for entity in self.world.entities()
            if entity.is_player and entity.username != self.world.username
        ]
        target = nearest(me, others, max_distance=self.tuning.look_radius)
        if target is None:
            return False
        await self.world.look_at(target.position.offset(0, target.height, 0))
        return True

    async def run(self) -> None:
        while True:
            try:
                await self.tick()
            except WorldActionError as exc:
                LOGGER.debug("[%s] Look failed: %s", self.world.username, exc.cause)
            await asyncio.sleep(self.tuning.look_interval_sec)
