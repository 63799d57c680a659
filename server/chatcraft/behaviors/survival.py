from __future__ import annotations

import asyncio
import logging

from chatcraft.agents.agent import Entity, ItemStack, Vec3
from chatcraft.agents.movement import nearest, step_away_from
from chatcraft.commands.combat import entity_by_id, pursue
from chatcraft.config import Tuning
from chatcraft.session.messenger import Messenger
from chatcraft.session.state import SessionState
from chatcraft.world.connection import GameData, GoalNear, GoalXZ, WorldActionError, WorldConnection

LOGGER = logging.getLogger("chatcraft.behaviors.survival")

HEALING_ITEMS = ("enchanted_golden_apple", "golden_apple")
OBJECTIONABLE_FOODS = frozenset(
    {
        "rotten_flesh",
        "spider_eye",
        "poisonous_potato",
        "pufferfish",
        "suspicious_stew",
        "chicken",
    }
)
HOSTILE_MOBS = frozenset(
    {
        "zombie",
        "zombie_villager",
        "husk",
        "drowned",
        "skeleton",
        "stray",
        "bogged",
        "wither_skeleton",
        "creeper",
        "spider",
        "cave_spider",
        "enderman",
        "endermite",
        "silverfish",
        "witch",
        "slime",
        "magma_cube",
        "phantom",
        "blaze",
        "ghast",
        "guardian",
        "elder_guardian",
        "shulker",
        "vex",
        "pillager",
        "vindicator",
        "evoker",
        "ravager",
        "hoglin",
        "zoglin",
        "piglin_brute",
        "breeze",
        "warden",
    }
)
DROPPED_ITEM = "item"


def best_food(items: list[ItemStack], data: GameData) -> ItemStack | None:
    best: ItemStack | None = None
    best_points = 0.0
    for item in items:
        if item.name in OBJECTIONABLE_FOODS or item.name in HEALING_ITEMS:
            continue
        points = data.food_points(item.name)
        if points is None or points <= best_points:
            continue
        best = item
        best_points = points
    return best


class AutoEat:
    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        tuning: Tuning,
        messenger: Messenger,
    ) -> None:
        self.world = world
        self.session = session
        self.tuning = tuning
        self.messenger = messenger
        self._distressed = False

    def choose(self, health: float, food: float, items: list[ItemStack]) -> ItemStack | None:
        if health < self.tuning.eat_health_threshold:
            for name in HEALING_ITEMS:
                stack = next((item for item in items if item.name == name), None)
                if stack is not None:
                    return stack
        if food < self.tuning.eat_food_threshold:
            return best_food(items, self.world.data)
        return None

    async def tick(self) -> ItemStack | None:
        if self.session.eating:
            return None

        status = self.world.telemetry()
        if status.health < self.tuning.distress_health_threshold:
            if not self._distressed:
                self._distressed = True
                self.messenger.announce(f"Help! I'm badly hurt ({status.health:g}/{status.max_health:g} health)")
        elif status.health >= self.tuning.eat_health_threshold:
            self._distressed = False

        choice = self.choose(status.health, status.food, self.world.inventory())
        if choice is None:
            return None

        self.session.eating = True
        try:
            LOGGER.info(
                "[%s] Eating %s (health %g, food %g)", self.world.username, choice.name, status.health, status.food
            )
            await self.world.equip(choice, "hand")
            await self.world.consume()
        except WorldActionError as exc:
            LOGGER.warning("[%s] Failed to eat %s: %s", self.world.username, choice.name, exc.cause)
        finally:
            self.session.eating = False
        return choice

    async def run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.tuning.eat_interval_sec)


class AutoDefense:
    """Fights back when hurt: pursue and strike above the health floor, flee below it.

    Engagements live in the session's combat slot, so a new threat replaces the
    current one and ``!stop`` ends either.
    """

    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        tuning: Tuning,
        messenger: Messenger,
        include_players: bool = False,
    ) -> None:
        self.world = world
        self.session = session
        self.tuning = tuning
        self.messenger = messenger
        self.include_players = include_players

    def is_threat(self, entity: Entity) -> bool:
        if entity.is_player:
            return self.include_players and entity.username != self.world.username
        return entity.name in HOSTILE_MOBS

    def find_threat(self) -> Entity | None:
        me = self.world.telemetry().position
        threats = [entity for entity in self.world.entities() if self.is_threat(entity)]
        return nearest(me, threats, max_distance=self.tuning.defense_radius)

    def on_hurt(self) -> Entity | None:
        threat = self.find_threat()
        if threat is None:
            return None
        if self.session.combat.active and self.session.combat_target == threat.id:
            return threat

        LOGGER.info("[%s] Hurt, engaging %s", self.world.username, threat.label)
        self.session.combat_target = threat.id
        self.session.combat.start(self._engage(threat.id, threat.label))
        return threat

    async def _engage(self, threat_id: int, label: str) -> None:
        reason = await pursue(
            self.world,
            self.tuning,
            lambda: entity_by_id(self.world, threat_id),
            max_range=self.tuning.pursuit_range,
            health_floor=self.tuning.defense_health_floor,
        )
        LOGGER.info("[%s] Defense against %s ended: %s", self.world.username, label, reason)
        if self.session.combat_target == threat_id:
            self.session.combat_target = None

        threat = entity_by_id(self.world, threat_id)
        if reason == "low_health" and threat is not None:
            self.flee(threat.position)
        else:
            self.world.stop_moving()

    def flee(self, danger: Vec3) -> Vec3:
        me = self.world.telemetry().position
        refuge = step_away_from(me, danger, self.tuning.flee_distance)
        LOGGER.info("[%s] Fleeing toward %s", self.world.username, refuge.short())
        self.messenger.announce("I'm too hurt to fight, running away!")
        self.world.set_goal(GoalXZ(refuge.x, refuge.z))
        return refuge


class DeathReturn:
    """Walks back to where the agent died and picks up what it dropped."""

    def __init__(
        self,
        world: WorldConnection,
        session: SessionState,
        tuning: Tuning,
        messenger: Messenger,
    ) -> None:
        self.world = world
        self.session = session
        self.tuning = tuning
        self.messenger = messenger

    def on_death(self) -> None:
        position = self.world.telemetry().position
        self.session.death_position = Vec3(position.x, position.y, position.z)
        LOGGER.info("[%s] Died at %s", self.world.username, position.short())

    def on_respawn(self) -> None:
        target = self.session.death_position
        if target is None:
            return
        self.session.recovery.start(self._recover(target))

    async def _recover(self, target: Vec3) -> None:
        await asyncio.sleep(self.tuning.respawn_settle_sec)
        self.messenger.announce(f"Going back to where I died ({target.short()}) to get my items")

        self.world.set_goal(GoalNear(target, 2))
        if not await self.world.wait_for_goal(self.tuning.goal_timeout_sec):
            self.messenger.announce("Couldn't get back to where I died")
            return

        drops = [
            entity
            for entity in self.world.entities()
            if entity.name == DROPPED_ITEM and entity.position.distance_to(target) <= self.tuning.pickup_radius
        ]
        if not drops:
            self.messenger.announce("No items to pick up here")
            self.session.death_position = None
            return

        self.messenger.announce(f"Picking up {len(drops)} dropped items")
        for drop in drops:
            await self._collect(drop.id)
        self.world.stop_moving()
        self.session.death_position = None
        self.messenger.announce("Finished picking up my items")

    async def _collect(self, drop_id: int) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.tuning.pickup_timeout_sec
        while loop.time() < deadline:
            drop = entity_by_id(self.world, drop_id)
            if drop is None:
                return True
            me = self.world.telemetry().position
            if me.distance_to(drop.position) > self.tuning.pickup_reach:
                self.world.set_goal(GoalNear(drop.position, 0))
            await asyncio.sleep(self.tuning.pickup_poll_sec)
        LOGGER.info("[%s] Gave up on dropped item %s", self.world.username, drop_id)
        return False
