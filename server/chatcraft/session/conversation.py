from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Literal

LOGGER = logging.getLogger("chatcraft.session.conversation")

Role = Literal["system", "user", "assistant"]
ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


class ConversationLog:
    """Role-tagged message log for one agent; element 0 is always the system prompt.

    When ``path`` is set every append rewrites the whole file before returning.
    """

    def __init__(
        self,
        system_prompt: str,
        path: Path | None = None,
        listener: Callable[[dict[str, str]], None] | None = None,
    ) -> None:
        self.path = path
        self.listener = listener
        self._messages: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]

    @classmethod
    def open(cls, system_prompt: str, path: Path | None) -> "ConversationLog":
        log = cls(system_prompt, path=path)
        if path is None or not path.exists():
            return log

        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.error("Failed to load conversation %s: %s", path, exc)
            return log
        if not isinstance(loaded, list) or not loaded:
            return log

        messages = [
            {"role": str(item["role"]), "content": str(item.get("content") or "")}
            for item in loaded
            if isinstance(item, dict) and item.get("role") in ROLES
        ]
        if not messages:
            return log
        if messages[0]["role"] != "system":
            messages.insert(0, {"role": "system", "content": system_prompt})
        else:
            messages[0]["content"] = system_prompt
        log._messages = messages
        return log

    @property
    def system_prompt(self) -> str:
        return self._messages[0]["content"]

    def messages(self) -> list[dict[str, str]]:
        return [dict(message) for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, role: Role, content: str) -> None:
        if role not in ROLES or role == "system":
            raise ValueError(f"cannot append message with role {role!r}")
        message = {"role": role, "content": content}
        self._messages.append(message)
        self.flush()
        if self.listener is not None:
            self.listener(dict(message))

    def clear(self) -> None:
        del self._messages[1:]
        self.flush()

    def flush(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._messages, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            LOGGER.error("Failed to save conversation %s: %s", self.path, exc)
