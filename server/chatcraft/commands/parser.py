from __future__ import annotations

import re
from dataclasses import dataclass, field

QUERY_COMMANDS: frozenset[str] = frozenset(
    {"stats", "inventory", "nearbyBlocks", "entities", "savedPlaces", "viewChest"}
)

_COMMAND_RE = re.compile(r"!(\w+)(?:\(([^)]*)\))?")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

Arg = str | int | float


@dataclass(frozen=True)
class Command:
    name: str
    args: tuple[Arg, ...] = field(default_factory=tuple)

    @property
    def is_query(self) -> bool:
        return self.name in QUERY_COMMANDS

    def arg(self, index: int, default: Arg | None = None) -> Arg | None:
        return self.args[index] if index < len(self.args) else default

    def text(self) -> str:
        if not self.args:
            return f"!{self.name}"
        return f"!{self.name}({', '.join(str(arg) for arg in self.args)})"


def coerce_number(value: str) -> Arg:
    stripped = value.strip()
    if not _NUMBER_RE.fullmatch(stripped):
        return stripped
    number = float(stripped)
    if number.is_integer() and not any(ch in stripped for ch in ".eE"):
        return int(stripped)
    return number


def split_args(raw: str) -> list[Arg]:
    """Split a parenthesised argument list on commas outside quotes.

    Quoted arguments keep their exact content; unquoted ones are trimmed and
    coerced to numbers when they parse fully as one. Raises ``ValueError`` on an
    unterminated quote or text trailing a closing quote.
    """
    if not raw.strip():
        return []

    args: list[Arg] = []
    idx = 0
    length = len(raw)
    while True:
        while idx < length and raw[idx].isspace():
            idx += 1

        if idx < length and raw[idx] in {'"', "'"}:
            quote = raw[idx]
            end = raw.find(quote, idx + 1)
            if end < 0:
                raise ValueError(f"unterminated quote at {idx}")
            args.append(raw[idx + 1 : end])
            idx = end + 1
            while idx < length and raw[idx].isspace():
                idx += 1
            if idx < length and raw[idx] != ",":
                raise ValueError(f"unexpected text after quoted argument at {idx}")
        else:
            end = raw.find(",", idx)
            if end < 0:
                end = length
            if raw[idx:end].strip():
                args.append(coerce_number(raw[idx:end]))
            idx = end

        if idx >= length:
            break
        idx += 1  # skip the comma
    return args


def parse_commands(text: str) -> list[Command]:
    commands: list[Command] = []
    if not text or "!" not in text:
        return commands

    for match in _COMMAND_RE.finditer(text):
        name = match.group(1)
        raw_args = match.group(2)
        try:
            args = split_args(raw_args) if raw_args is not None else []
        except ValueError:
            args = []
        commands.append(Command(name=name, args=tuple(args)))
    return commands


def query_commands(commands: list[Command]) -> list[Command]:
    return [command for command in commands if command.is_query]


def action_commands(commands: list[Command]) -> list[Command]:
    return [command for command in commands if not command.is_query]
