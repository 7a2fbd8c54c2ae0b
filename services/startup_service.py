from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from db.models import REQUIRED_BOOT_TABLES


EXPECTED_SLASH_COMMANDS = {
    "help",
    "invites",
    "userinvites",
    "invitestats",
    "allinvites",
    "invitehelp",
    "createlogchannel",
    "remind",
    "stopreminders",
    "ip",
    "rules",
    "p",
}


@dataclass(slots=True)
class BootSmokeStats:
    required_tables: int
    registered_commands: int
    missing_commands: list[str]


class SingletonGate:
    def __init__(self) -> None:
        self._held = False

    async def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True


def command_registry_health(registered_commands: Iterable[str]) -> tuple[list[str], list[str], list[str]]:
    registered = sorted(set(registered_commands))
    reg_set = set(registered)
    missing = sorted(EXPECTED_SLASH_COMMANDS - reg_set)
    unexpected = sorted(reg_set - EXPECTED_SLASH_COMMANDS)
    return registered, missing, unexpected


def run_boot_smoke_checks(existing_tables: Iterable[str], registered_commands: Iterable[str] = ()) -> BootSmokeStats:
    existing = set(existing_tables)
    missing = [table for table in REQUIRED_BOOT_TABLES if table not in existing]
    if missing:
        raise RuntimeError(f"Missing required DB tables: {', '.join(missing)}")

    registered, missing_commands, _ = command_registry_health(registered_commands)
    return BootSmokeStats(
        required_tables=len(REQUIRED_BOOT_TABLES),
        registered_commands=len(registered),
        missing_commands=missing_commands,
    )
