from __future__ import annotations

import math
import random
from collections.abc import Iterable

from chatcraft.agents.agent import Entity, Vec3


def step_away_from(current: Vec3, threat: Vec3, distance: float) -> Vec3:
    dx = current.x - threat.x
    dz = current.z - threat.z
    length = math.sqrt(dx * dx + dz * dz)
    if length < 1e-6:
        dx, dz = 1.0, 0.0
        length = 1.0

    ratio = distance / length
    return Vec3(current.x + dx * ratio, current.y, current.z + dz * ratio)


def random_point_around(current: Vec3, distance: float, rng: random.Random | None = None) -> Vec3:
    angle = (rng or random).random() * math.pi * 2
    return Vec3(current.x + math.cos(angle) * distance, current.y, current.z + math.sin(angle) * distance)


def nearest(origin: Vec3, entities: Iterable[Entity], max_distance: float | None = None) -> Entity | None:
    best: Entity | None = None
    best_distance = math.inf
    for entity in entities:
        dist = origin.distance_to(entity.position)
        if max_distance is not None and dist > max_distance:
            continue
        if dist < best_distance:
            best = entity
            best_distance = dist
    return best


def cube_offsets(radius_xz: int, radius_y: int) -> list[tuple[int, int, int]]:
    return [
        (dx, dy, dz)
        for dx in range(-radius_xz, radius_xz + 1)
        for dy in range(-radius_y, radius_y + 1)
        for dz in range(-radius_xz, radius_xz + 1)
    ]


FACES: tuple[Vec3, ...] = (
    Vec3(0, 1, 0),
    Vec3(0, -1, 0),
    Vec3(1, 0, 0),
    Vec3(-1, 0, 0),
    Vec3(0, 0, 1),
    Vec3(0, 0, -1),
)


def equip_destination(item_name: str) -> str:
    if "helmet" in item_name or "head" in item_name:
        return "head"
    if "chestplate" in item_name:
        return "torso"
    if "leggings" in item_name:
        return "legs"
    if "boots" in item_name:
        return "feet"
    return "hand"
