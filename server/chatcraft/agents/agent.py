from __future__ import annotations

import math
from dataclasses import dataclass, field


@dataclass
class Vec3:
    x: float
    y: float = 0.0
    z: float = 0.0

    def offset(self, dx: float, dy: float, dz: float) -> "Vec3":
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def floored(self) -> "Vec3":
        return Vec3(float(math.floor(self.x)), float(math.floor(self.y)), float(math.floor(self.z)))

    def distance_to(self, other: "Vec3") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return math.sqrt(dx * dx + dy * dy + dz * dz)

    def to_dict(self) -> dict:
        return {"x": round(self.x, 2), "y": round(self.y, 2), "z": round(self.z, 2)}

    def short(self) -> str:
        return f"{self.x:.1f}, {self.y:.1f}, {self.z:.1f}"

    def __str__(self) -> str:
        return f"({self.x:g}, {self.y:g}, {self.z:g})"


@dataclass
class ItemStack:
    name: str
    type_id: int
    count: int


@dataclass
class Entity:
    id: int
    name: str
    kind: str
    position: Vec3
    username: str | None = None
    height: float = 1.6

    @property
    def is_player(self) -> bool:
        return self.kind == "player"

    @property
    def label(self) -> str:
        return self.username or self.name


@dataclass
class Block:
    name: str
    position: Vec3


@dataclass
class Telemetry:
    position: Vec3
    health: float
    food: float
    time_of_day: int
    game_mode: str = "survival"
    max_health: float = 20.0
    max_food: float = 20.0


@dataclass
class Ingredient:
    id: int
    count: int


@dataclass
class Recipe:
    result_id: int
    result_count: int
    requires_table: bool
    ingredients: list[Ingredient] = field(default_factory=list)
    handle: object | None = None
