from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chatcraft.agents.agent import ItemStack
from chatcraft.commands.context import ActionContext, int_arg, is_all, str_arg
from chatcraft.commands.parser import Arg
from chatcraft.config import Tuning
from chatcraft.session.state import ContainerOp, SessionState
from chatcraft.world.connection import Container, WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.commands.containers")

CHEST_BLOCKS = {"chest", "trapped_chest"}


class ContainerQueue:
    """Serialises one agent's chest sessions: open, operate, close, next request.

    Requests are appended to ``session.chest_queue``; a single drain task works
    through them in arrival order, so two container windows are never open at
    the same time for the same agent.
    """

    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        tuning: Tuning,
        report: Callable[[str | None, str], None],
    ) -> None:
        self.world = world
        self.session = session
        self.tuning = tuning
        self.report = report
        self._drain_task: asyncio.Task | None = None

    def submit(self, op: ContainerOp) -> asyncio.Future:
        if op.result is None:
            op.result = asyncio.get_running_loop().create_future()
        self.session.chest_queue.append(op)
        if not self.session.chest_draining:
            self.session.chest_draining = True
            self._drain_task = asyncio.create_task(self._drain(), name="chest-queue")
        return op.result

    async def run(
        self,
        kind: str,
        item: str | None,
        amount: int,
        user: str | None,
        stacks: list[ItemStack] | None = None,
    ) -> str:
        op = ContainerOp(kind=kind, item=item, amount=amount, requesting_user=user, stacks=stacks)
        return await self.submit(op)

    async def view(self) -> str:
        return await self.run("view", None, 0, None)

    async def _drain(self) -> None:
        try:
            while self.session.chest_queue:
                op = self.session.chest_queue.popleft()
                try:
                    outcome = await self._process(op)
                except asyncio.CancelledError:
                    if op.result is not None and not op.result.done():
                        op.result.cancel()
                    raise
                except Exception as exc:
                    LOGGER.exception("[%s] Container operation %s crashed", self.world.username, op.kind)
                    outcome = f"Cannot access chest: {exc}"
                if op.result is not None and not op.result.done():
                    op.result.set_result(outcome)
        finally:
            self.session.chest_draining = False
            for op in self.session.chest_queue:
                if op.result is not None and not op.result.done():
                    op.result.cancel()
            self.session.chest_queue.clear()

    def _say(self, op: ContainerOp, message: str) -> str:
        if op.kind != "view":
            self.report(op.requesting_user, message)
        return message

    async def _process(self, op: ContainerOp) -> str:
        chest = self.world.find_block(CHEST_BLOCKS, self.tuning.container_radius)
        if chest is None:
            return self._say(op, "No chest found nearby")

        if op.kind == "deposit" and op.item != "*":
            stacks = [item for item in self.world.inventory() if item.name == op.item]
            held = sum(item.count for item in stacks)
            if not stacks or held < op.amount:
                return self._say(op, f"Don't have enough {op.item}")
        withdraw_id: int | None = None
        if op.kind == "withdraw" and op.item != "*":
            withdraw_id = self.world.data.item_id(op.item or "")
            if withdraw_id is None:
                return self._say(op, f"Unknown item: {op.item}")

        try:
            container = await self.world.open_container(chest)
        except WorldActionError as exc:
            if op.kind == "view":
                return "Cannot access chest"
            return self._say(op, f"Failed to open chest: {exc.cause}")

        try:
            if op.kind == "view":
                return self._describe(container)
            if op.kind == "deposit":
                return await self._deposit(op, container)
            return await self._withdraw(op, container, withdraw_id)
        finally:
            try:
                await container.close()
            except WorldActionError as exc:
                LOGGER.warning("[%s] Failed to close chest: %s", self.world.username, exc.cause)

    def _describe(self, container: Container) -> str:
        items = [f"{item.name} x{item.count}" for item in container.items()]
        return ", ".join(items) if items else "Empty chest"

    async def _deposit(self, op: ContainerOp, container: Container) -> str:
        if op.item != "*":
            stack = next(item for item in self.world.inventory() if item.name == op.item)
            try:
                await container.deposit(stack.type_id, op.amount)
            except WorldActionError as exc:
                return self._say(op, f"Failed to put item in chest: {exc.cause}")
            return self._say(op, f"Put {op.amount} {op.item} in chest")

        items = op.stacks if op.stacks is not None else list(self.world.inventory())
        if not items:
            return self._say(op, "Inventory is empty")
        self._say(op, f"Putting entire inventory in chest ({len(items)} items)")
        for item in items:
            try:
                await container.deposit(item.type_id, item.count)
            except WorldActionError as exc:
                self._say(op, f"Failed to put {item.name} in chest: {exc.cause}")
            await asyncio.sleep(self.tuning.container_item_delay_sec)
        return self._say(op, "Put entire inventory in chest")

    async def _withdraw(self, op: ContainerOp, container: Container, type_id: int | None) -> str:
        if type_id is not None:
            try:
                await container.withdraw(type_id, op.amount)
            except WorldActionError as exc:
                return self._say(op, f"Failed to take item from chest: {exc.cause}")
            return self._say(op, f"Took {op.amount} {op.item} from chest")

        items = list(container.items())
        if not items:
            return self._say(op, "Chest is empty")
        self._say(op, f"Taking all items from chest ({len(items)} types)")
        for item in items:
            try:
                await container.withdraw(item.type_id, item.count)
            except WorldActionError as exc:
                self._say(op, f"Failed to take {item.name} from chest: {exc.cause}")
            await asyncio.sleep(self.tuning.container_item_delay_sec)
        return self._say(op, "Took all items from chest")


async def put_in_chest(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    first = args[0] if args else None
    item = "*" if is_all(first) else str_arg(first)
    if not item:
        ctx.report("No item specified to put in chest")
        return
    amount = int_arg(args[1] if len(args) > 1 else None, 1)
    if item != "*":
        ctx.report(f"Putting {amount} {item} in chest")
        await ctx.containers.run("deposit", item, amount, ctx.user)
        return
    # the batch covers what was held when the command was issued
    stacks = list(ctx.world.inventory())
    if not stacks:
        ctx.report("Inventory is empty")
        return
    await ctx.containers.run("deposit", item, amount, ctx.user, stacks=stacks)


async def take_from_chest(ctx: ActionContext, args: tuple[Arg, ...]) -> None:
    first = args[0] if args else None
    item = "*" if is_all(first) else str_arg(first)
    if not item:
        ctx.report("No item specified to take from chest")
        return
    amount = int_arg(args[1] if len(args) > 1 else None, 1)
    if item != "*":
        ctx.report(f"Taking {amount} {item} from chest")
    await ctx.containers.run("withdraw", item, amount, ctx.user)
