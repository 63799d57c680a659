from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

LOGGER = logging.getLogger("chatcraft.config")

PROVIDER_KEY_NAMES = {
    "openai": "OPENAI_API_KEY",
    "ollama": "OLLAMA_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "andy": "ANDY_API_KEY",
    "pollinations": "POLLINATIONS_API_KEY",
}


class ConfigError(RuntimeError):
    pass


def load_env_from_repo_root() -> None:
    # server/chatcraft/config.py -> repo root is 2 levels up from "server"
    env_path = Path(__file__).resolve().parents[2] / ".env"
    if not env_path.exists():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = value.strip()
        if value and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_float(name: str, default: float, low: float, high: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(high, value))


@dataclass(frozen=True)
class Tuning:
    """Polling intervals, ceilings and radii shared by actions and behaviours.

    These are tuning decisions rather than incidental details, so every one of
    them can be overridden through the environment at startup.
    """

    follow_poll_sec: float = 1.0
    combat_poll_sec: float = 0.5
    combat_max_sec: float = 30.0
    melee_range: float = 1.0
    attack_reach: float = 4.0
    interact_radius: float = 6.0
    bed_radius: float = 16.0
    entity_search_radius: float = 16.0
    goal_timeout_sec: float = 30.0
    container_item_delay_sec: float = 0.1
    container_radius: float = 6.0
    table_radius: float = 6.0
    block_search_radius: float = 32.0
    give_settle_sec: float = 2.0
    dig_delay_sec: float = 1.0
    look_interval_sec: float = 1.0
    look_radius: float = 6.0
    eat_interval_sec: float = 2.0
    eat_health_threshold: float = 10.0
    distress_health_threshold: float = 6.0
    eat_food_threshold: float = 14.0
    defense_radius: float = 16.0
    pursuit_range: float = 24.0
    defense_health_floor: float = 6.0
    flee_distance: float = 12.0
    respawn_settle_sec: float = 3.0
    pickup_radius: float = 8.0
    pickup_poll_sec: float = 0.5
    pickup_timeout_sec: float = 10.0
    pickup_reach: float = 1.5
    reconnect_delay_sec: float = 5.0

    @classmethod
    def from_env(cls) -> "Tuning":
        return cls(
            follow_poll_sec=env_float("FOLLOW_POLL_SEC", 1.0, 0.05, 30.0),
            combat_poll_sec=env_float("COMBAT_POLL_SEC", 0.5, 0.05, 10.0),
            combat_max_sec=env_float("COMBAT_MAX_SEC", 30.0, 1.0, 600.0),
            melee_range=env_float("MELEE_RANGE", 1.0, 0.5, 4.0),
            attack_reach=env_float("ATTACK_REACH", 4.0, 1.0, 6.0),
            interact_radius=env_float("INTERACT_RADIUS", 6.0, 1.0, 32.0),
            bed_radius=env_float("BED_RADIUS", 16.0, 1.0, 64.0),
            entity_search_radius=env_float("ENTITY_SEARCH_RADIUS", 16.0, 1.0, 128.0),
            goal_timeout_sec=env_float("GOAL_TIMEOUT_SEC", 30.0, 1.0, 600.0),
            container_item_delay_sec=env_float("CONTAINER_ITEM_DELAY_SEC", 0.1, 0.0, 5.0),
            container_radius=env_float("CONTAINER_RADIUS", 6.0, 1.0, 32.0),
            table_radius=env_float("TABLE_RADIUS", 6.0, 1.0, 32.0),
            block_search_radius=env_float("BLOCK_SEARCH_RADIUS", 32.0, 4.0, 128.0),
            give_settle_sec=env_float("GIVE_SETTLE_SEC", 2.0, 0.0, 30.0),
            dig_delay_sec=env_float("DIG_DELAY_SEC", 1.0, 0.0, 10.0),
            look_interval_sec=env_float("LOOK_INTERVAL_SEC", 1.0, 0.1, 30.0),
            look_radius=env_float("LOOK_RADIUS", 6.0, 1.0, 64.0),
            eat_interval_sec=env_float("EAT_INTERVAL_SEC", 2.0, 0.1, 60.0),
            eat_health_threshold=env_float("EAT_HEALTH_THRESHOLD", 10.0, 1.0, 20.0),
            distress_health_threshold=env_float("DISTRESS_HEALTH_THRESHOLD", 6.0, 0.0, 20.0),
            eat_food_threshold=env_float("EAT_FOOD_THRESHOLD", 14.0, 1.0, 20.0),
            defense_radius=env_float("DEFENSE_RADIUS", 16.0, 2.0, 64.0),
            pursuit_range=env_float("PURSUIT_RANGE", 24.0, 4.0, 128.0),
            defense_health_floor=env_float("DEFENSE_HEALTH_FLOOR", 6.0, 0.0, 20.0),
            flee_distance=env_float("FLEE_DISTANCE", 12.0, 2.0, 64.0),
            respawn_settle_sec=env_float("RESPAWN_SETTLE_SEC", 3.0, 0.0, 60.0),
            pickup_radius=env_float("PICKUP_RADIUS", 8.0, 1.0, 32.0),
            pickup_poll_sec=env_float("PICKUP_POLL_SEC", 0.5, 0.05, 10.0),
            pickup_timeout_sec=env_float("PICKUP_TIMEOUT_SEC", 10.0, 1.0, 120.0),
            pickup_reach=env_float("PICKUP_REACH", 1.5, 0.5, 4.0),
            reconnect_delay_sec=env_float("RECONNECT_DELAY_SEC", 5.0, 0.0, 120.0),
        )


class BotConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str = Field(min_length=1, max_length=16)
    personality: str = "You are helpful and friendly."
    provider: Literal["openai", "ollama", "openrouter", "gemini", "andy", "pollinations"] = "openai"
    model: str = "gpt-4o-mini"
    max_tokens: int = Field(default=256, ge=16, le=4096)
    save_conversation: bool = False
    action_chat_feedback: bool = True
    action_conversation_feedback: bool = True
    look_at_player: bool = True
    auto_eat: bool = True
    auto_defend: bool = True
    defend_against_players: bool = False
    return_on_death: bool = True
    idle_timeout_sec: float = Field(default=0.0, ge=0.0)
    idle_message: str = "You have been idle for a while. Look around and decide what to do next."
    chat_mode: Literal["auto", "public", "whisper"] = "auto"
    allowed_users: list[str] = Field(default_factory=list)

    def allows(self, username: str) -> bool:
        return not self.allowed_users or username in self.allowed_users


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    host: str = "localhost"
    port: int = Field(default=25565, ge=1, le=65535)
    minecraft_version: str | None = None
    init_message: str | None = None
    prompt_file: str = "prompt.txt"
    conversations_dir: str = "conversations"
    bots: list[BotConfig] = Field(default_factory=list)

    def effective_chat_mode(self, bot: BotConfig) -> str:
        if bot.chat_mode != "auto":
            return bot.chat_mode
        # one bot answers public chat; several bots share the server and only answer whispers
        return "public" if len(self.bots) == 1 else "whisper"


def load_config(path: str | Path) -> ServerConfig:
    config_path = Path(path)
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"Failed to load {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if isinstance(raw.get("minecraft_version"), (int, float)):
        raw["minecraft_version"] = str(raw["minecraft_version"])
    try:
        config = ServerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc
    if not config.bots:
        raise ConfigError(f"No bots defined in {config_path}.")
    return config


def load_prompt(path: str | Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"Failed to load {path}: {exc}") from exc


def render_prompt(template: str, variables: dict[str, str]) -> str:
    result = template
    for key, value in variables.items():
        result = result.replace("{" + key + "}", value)
    return result


def persona_prompt(template: str, bot: BotConfig) -> str:
    return render_prompt(template, {"USERNAME": bot.username, "PERSONALITY": bot.personality})


def load_keys_file(path: str | Path) -> dict[str, Any]:
    keys_path = Path(path)
    if not keys_path.exists():
        return {}
    try:
        loaded = json.loads(keys_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to load %s: %s", keys_path, exc)
        return {}
    return loaded if isinstance(loaded, dict) else {}


def resolve_api_key(provider: str, keys: dict[str, Any]) -> str | None:
    key_name = PROVIDER_KEY_NAMES.get(provider)
    if key_name is None:
        return None
    value = os.getenv(key_name, "").strip() or str(keys.get(key_name) or "").strip()
    return value or None
