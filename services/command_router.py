from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from gateway.safety import safe_reply


log = logging.getLogger("bitcraft.commands")

ADMIN_DENIED_REPLY = "You need administrator or manage server permissions to use this command!"
COMMAND_ERROR_REPLY = "There was an error executing that command."


@dataclass(frozen=True, slots=True)
class CommandContext:
    message: Any
    prefix: str
    invoked_name: str
    args: list[str]


CommandHandler = Callable[[CommandContext], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class PrefixCommand:
    name: str
    handler: CommandHandler
    description: str = ""
    aliases: tuple[str, ...] = field(default_factory=tuple)
    admin_only: bool = False


class CommandRouter:
    """Prefix command table with aliases; names are matched case-insensitively."""

    def __init__(self, prefixes: Sequence[str]) -> None:
        self.prefixes = tuple(prefix for prefix in prefixes if prefix)
        self._commands: dict[str, PrefixCommand] = {}
        self._lookup: dict[str, PrefixCommand] = {}

    def register(self, command: PrefixCommand) -> PrefixCommand:
        names = [command.name, *command.aliases]
        for raw in names:
            key = raw.lower()
            existing = self._lookup.get(key)
            if existing is not None and existing.name != command.name:
                raise ValueError(f"Command name '{key}' is already used by '{existing.name}'")
        self._commands[command.name.lower()] = command
        for raw in names:
            self._lookup[raw.lower()] = command
        return command

    def get(self, name: str) -> PrefixCommand | None:
        return self._lookup.get((name or "").lower())

    @property
    def commands(self) -> list[PrefixCommand]:
        return [self._commands[name] for name in sorted(self._commands)]

    def parse(self, content: str | None) -> tuple[str, str, list[str]] | None:
        """Returns ``(prefix, command_name, args)`` or None when the message is not a command."""
        text = content or ""
        prefix = next((candidate for candidate in self.prefixes if text.startswith(candidate)), None)
        if prefix is None:
            return None
        parts = text[len(prefix) :].strip().split()
        if not parts:
            return None
        return prefix, parts[0].lower(), parts[1:]

    async def dispatch(self, message: Any, *, is_admin: bool) -> bool:
        parsed = self.parse(getattr(message, "content", None))
        if parsed is None:
            return False
        prefix, invoked_name, args = parsed
        command = self.get(invoked_name)
        if command is None:
            return False

        author_id = getattr(getattr(message, "author", None), "id", None)
        if command.admin_only and not is_admin:
            log.info("Prefix command denied command=%s user_id=%s", command.name, author_id)
            await safe_reply(message, ADMIN_DENIED_REPLY)
            return True

        log.info("Prefix command command=%s user_id=%s", command.name, author_id)
        try:
            await command.handler(CommandContext(message=message, prefix=prefix, invoked_name=invoked_name, args=args))
        except Exception:
            log.exception("Error executing command %s", invoked_name)
            await safe_reply(message, COMMAND_ERROR_REPLY)
        return True
