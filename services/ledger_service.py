from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime

from db.repository import LedgerEntryRecord, LedgerRepository
from gateway.task_registry import GuildLockRegistry
from services.attribution_service import AttributionOutcome, AttributionResult
from services.errors import PersistenceFailure


log = logging.getLogger("bitcraft.invites")

UNKNOWN_INVITER = "unknown"
VANITY_INVITER = "vanity"
SENTINEL_INVITERS = frozenset({UNKNOWN_INVITER, VANITY_INVITER})
UNKNOWN_INVITE_CODE = "unknown"
DEFAULT_HISTORY_PAGE_SIZE = 10


@dataclass(frozen=True, slots=True)
class LeaderboardRow:
    inviter_id: str
    count: int


@dataclass(frozen=True, slots=True)
class HistoryPage:
    entries: list[LedgerEntryRecord]
    page: int
    total_pages: int
    total_entries: int


def build_ledger_entry(
    *,
    guild_id: int,
    result: AttributionResult,
    member_id: int,
    member_display_name: str,
    joined_at: datetime | None = None,
) -> LedgerEntryRecord:
    if result.outcome is AttributionOutcome.ATTRIBUTED:
        inviter_id = result.inviter_id or UNKNOWN_INVITER
    elif result.outcome is AttributionOutcome.VANITY_URL:
        inviter_id = VANITY_INVITER
    else:
        inviter_id = UNKNOWN_INVITER
    return LedgerEntryRecord(
        guild_id=int(guild_id),
        inviter_id=str(inviter_id),
        member_id=int(member_id),
        member_display_name=member_display_name,
        invite_code=result.invite_code or UNKNOWN_INVITE_CODE,
        outcome=result.outcome.value,
        joined_at=joined_at or datetime.now(UTC),
    )


class InviteLedger:
    """Append-only join ledger; invite counts are always derived from the entries."""

    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo
        self._locks = GuildLockRegistry()

    async def append(self, entry: LedgerEntryRecord) -> LedgerEntryRecord:
        async with self._locks.lock_for(entry.guild_id):
            try:
                stored = await self.repo.insert_ledger_entry(entry)
            except Exception as exc:
                log.error(
                    "Ledger append failed guild_id=%s inviter_id=%s member_id=%s: %s",
                    entry.guild_id,
                    entry.inviter_id,
                    entry.member_id,
                    exc,
                )
                raise PersistenceFailure(entry.guild_id, f"ledger append failed: {exc}") from exc
        log.info(
            "Ledger entry stored guild_id=%s inviter_id=%s member_id=%s code=%s",
            stored.guild_id,
            stored.inviter_id,
            stored.member_id,
            stored.invite_code,
        )
        return stored

    async def invite_count(self, guild_id: int, inviter_id: str) -> int:
        return await self.repo.count_for_inviter(guild_id, str(inviter_id))

    async def query_leaderboard(
        self,
        guild_id: int,
        limit: int,
        *,
        include_sentinels: bool = False,
    ) -> list[LeaderboardRow]:
        counts = await self.repo.count_by_inviter(guild_id)
        rows = [
            LeaderboardRow(inviter_id=inviter_id, count=count)
            for inviter_id, count in counts.items()
            if count > 0 and (include_sentinels or inviter_id not in SENTINEL_INVITERS)
        ]
        rows.sort(key=lambda row: (-row.count, row.inviter_id))
        return rows[: max(0, int(limit))]

    async def query_by_inviter(self, guild_id: int, inviter_id: str, limit: int) -> list[LedgerEntryRecord]:
        return await self.repo.list_by_inviter(guild_id, str(inviter_id), limit=max(0, int(limit)))

    async def query_history(
        self,
        guild_id: int,
        *,
        page: int = 1,
        per_page: int = DEFAULT_HISTORY_PAGE_SIZE,
    ) -> HistoryPage:
        per_page = max(1, int(per_page))
        total = await self.repo.count_for_guild(guild_id, exclude_inviters=SENTINEL_INVITERS)
        total_pages = max(1, math.ceil(total / per_page))
        page = min(max(1, int(page)), total_pages)
        entries = await self.repo.list_for_guild(
            guild_id,
            limit=per_page,
            offset=(page - 1) * per_page,
            exclude_inviters=SENTINEL_INVITERS,
        )
        return HistoryPage(entries=entries, page=page, total_pages=total_pages, total_entries=total)
