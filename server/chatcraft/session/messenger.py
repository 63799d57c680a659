from __future__ import annotations

import logging

from chatcraft.world.connection import WorldConnection

LOGGER = logging.getLogger("chatcraft.session.messenger")

MC_CHAT_LIMIT = 256
CHUNK_MARGIN = 10


def chunk_message(text: str, limit: int = MC_CHAT_LIMIT, margin: int = CHUNK_MARGIN) -> list[str]:
    size = max(1, limit - margin)
    return [text[idx : idx + size] for idx in range(0, len(text), size)]


class Messenger:
    """Sends text to one user (whisper) or to everyone, split to the chat limit."""

    def __init__(self, world: WorldConnection, chat_mode: str = "whisper") -> None:
        self.world = world
        self.chat_mode = chat_mode

    def send(self, recipient: str | None, text: str) -> None:
        for part in chunk_message(text):
            if recipient is None or self.chat_mode == "public":
                self.world.chat(part)
            else:
                self.world.whisper(recipient, part)

    def announce(self, text: str) -> None:
        self.send(None, text)
