from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from utils.time_utils import as_utc


@dataclass(frozen=True, slots=True)
class LedgerEntryRecord:
    guild_id: int
    inviter_id: str
    member_id: int
    member_display_name: str
    invite_code: str
    outcome: str
    joined_at: datetime
    id: int | None = None


@dataclass(slots=True)
class GuildSettingsRecord:
    guild_id: int
    guild_name: str | None = None
    invite_log_channel_id: int | None = None
    welcome_channel_id: int | None = None


STATUS_CHANNEL_FIELDS = (
    "status_channel_id",
    "players_channel_id",
    "performance_channel_id",
    "stat_status_channel_id",
    "stat_players_channel_id",
    "stat_tps_channel_id",
    "stat_memory_channel_id",
    "text_channel_id",
)


@dataclass(slots=True)
class ServerStatusSettingsRecord:
    guild_id: int
    server_address: str
    server_port: int
    update_interval_seconds: int
    status_channel_id: int | None = None
    players_channel_id: int | None = None
    performance_channel_id: int | None = None
    stat_status_channel_id: int | None = None
    stat_players_channel_id: int | None = None
    stat_tps_channel_id: int | None = None
    stat_memory_channel_id: int | None = None
    text_channel_id: int | None = None

    def tracked_channels(self) -> dict[str, int]:
        channels = {name: getattr(self, name) for name in STATUS_CHANNEL_FIELDS}
        return {name: int(channel_id) for name, channel_id in channels.items() if channel_id}


def newest_first_key(entry: LedgerEntryRecord) -> tuple[datetime, int]:
    return (as_utc(entry.joined_at), int(entry.id or 0))


class LedgerRepository(Protocol):
    async def insert_ledger_entry(self, entry: LedgerEntryRecord) -> LedgerEntryRecord: ...

    async def count_by_inviter(self, guild_id: int) -> dict[str, int]: ...

    async def count_for_inviter(self, guild_id: int, inviter_id: str) -> int: ...

    async def list_by_inviter(self, guild_id: int, inviter_id: str, *, limit: int) -> list[LedgerEntryRecord]: ...

    async def list_for_guild(
        self,
        guild_id: int,
        *,
        limit: int,
        offset: int = 0,
        exclude_inviters: Iterable[str] = (),
    ) -> list[LedgerEntryRecord]: ...

    async def count_for_guild(self, guild_id: int, *, exclude_inviters: Iterable[str] = ()) -> int: ...

    async def get_settings(self, guild_id: int) -> GuildSettingsRecord | None: ...

    async def save_settings(self, settings: GuildSettingsRecord) -> GuildSettingsRecord: ...

    async def get_status_settings(self, guild_id: int) -> ServerStatusSettingsRecord | None: ...

    async def save_status_settings(self, settings: ServerStatusSettingsRecord) -> ServerStatusSettingsRecord: ...

    async def list_status_settings(self) -> list[ServerStatusSettingsRecord]: ...


class InMemoryRepository:
    """Dict-backed repository with the same contract as the SQL one; used by tests and dry runs."""

    def __init__(self) -> None:
        self.ledger: Dict[int, List[LedgerEntryRecord]] = {}
        self.settings: Dict[int, GuildSettingsRecord] = {}
        self.status_settings: Dict[int, ServerStatusSettingsRecord] = {}
        self._entry_id = 1
        self.fail_next_insert: Optional[Exception] = None

    def reset(self) -> None:
        self.ledger.clear()
        self.settings.clear()
        self.status_settings.clear()
        self._entry_id = 1
        self.fail_next_insert = None

    async def insert_ledger_entry(self, entry: LedgerEntryRecord) -> LedgerEntryRecord:
        if self.fail_next_insert is not None:
            exc, self.fail_next_insert = self.fail_next_insert, None
            raise exc
        stored = replace(entry, id=self._entry_id, joined_at=as_utc(entry.joined_at))
        self._entry_id += 1
        self.ledger.setdefault(int(entry.guild_id), []).append(stored)
        return stored

    def _guild_entries(self, guild_id: int) -> list[LedgerEntryRecord]:
        return list(self.ledger.get(int(guild_id), []))

    async def count_by_inviter(self, guild_id: int) -> dict[str, int]:
        return dict(Counter(entry.inviter_id for entry in self._guild_entries(guild_id)))

    async def count_for_inviter(self, guild_id: int, inviter_id: str) -> int:
        return sum(1 for entry in self._guild_entries(guild_id) if entry.inviter_id == str(inviter_id))

    async def list_by_inviter(self, guild_id: int, inviter_id: str, *, limit: int) -> list[LedgerEntryRecord]:
        rows = [entry for entry in self._guild_entries(guild_id) if entry.inviter_id == str(inviter_id)]
        rows.sort(key=newest_first_key, reverse=True)
        return rows[: max(0, int(limit))]

    async def list_for_guild(
        self,
        guild_id: int,
        *,
        limit: int,
        offset: int = 0,
        exclude_inviters: Iterable[str] = (),
    ) -> list[LedgerEntryRecord]:
        excluded = {str(value) for value in exclude_inviters}
        rows = [entry for entry in self._guild_entries(guild_id) if entry.inviter_id not in excluded]
        rows.sort(key=newest_first_key, reverse=True)
        start = max(0, int(offset))
        return rows[start : start + max(0, int(limit))]

    async def count_for_guild(self, guild_id: int, *, exclude_inviters: Iterable[str] = ()) -> int:
        excluded = {str(value) for value in exclude_inviters}
        return sum(1 for entry in self._guild_entries(guild_id) if entry.inviter_id not in excluded)

    async def get_settings(self, guild_id: int) -> GuildSettingsRecord | None:
        row = self.settings.get(int(guild_id))
        return replace(row) if row is not None else None

    async def save_settings(self, settings: GuildSettingsRecord) -> GuildSettingsRecord:
        stored = replace(settings)
        self.settings[int(settings.guild_id)] = stored
        return replace(stored)

    async def get_status_settings(self, guild_id: int) -> ServerStatusSettingsRecord | None:
        row = self.status_settings.get(int(guild_id))
        return replace(row) if row is not None else None

    async def save_status_settings(self, settings: ServerStatusSettingsRecord) -> ServerStatusSettingsRecord:
        stored = replace(settings)
        self.status_settings[int(settings.guild_id)] = stored
        return replace(stored)

    async def list_status_settings(self) -> list[ServerStatusSettingsRecord]:
        return [replace(row) for _, row in sorted(self.status_settings.items())]
