from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from db.repository import LedgerEntryRecord
from services.errors import AuthorizationError, FetchFailure
from services.ledger_service import DEFAULT_HISTORY_PAGE_SIZE, HistoryPage, InviteLedger, LeaderboardRow
from services.snapshot_service import InviteSnapshot, InviteSnapshotStore


log = logging.getLogger("bitcraft.commands")

DEFAULT_LEADERBOARD_LIMIT = 20
DEFAULT_RECENT_INVITES_LIMIT = 5


class AuthorizationLevel(IntEnum):
    UNPRIVILEGED = 0
    MODERATOR = 1
    ADMINISTRATOR = 2


def authorization_from_permissions(permissions: Any) -> AuthorizationLevel:
    if permissions is None:
        return AuthorizationLevel.UNPRIVILEGED
    if getattr(permissions, "administrator", False):
        return AuthorizationLevel.ADMINISTRATOR
    if getattr(permissions, "manage_guild", False):
        return AuthorizationLevel.MODERATOR
    return AuthorizationLevel.UNPRIVILEGED


def require(auth: AuthorizationLevel, required: AuthorizationLevel) -> None:
    if auth < required:
        raise AuthorizationError(required.name, auth.name)


@dataclass(frozen=True, slots=True)
class InviterReport:
    inviter_id: str
    total_invites: int
    recent: list[LedgerEntryRecord]


@dataclass(frozen=True, slots=True)
class ActiveInvitesReport:
    invites: list[InviteSnapshot]
    stale: bool = False


class InviteQueryService:
    """Read-only invite queries gated by the caller's authorization level."""

    def __init__(self, ledger: InviteLedger, snapshots: InviteSnapshotStore) -> None:
        self.ledger = ledger
        self.snapshots = snapshots

    async def leaderboard(
        self,
        guild_id: int,
        auth: AuthorizationLevel,
        *,
        limit: int = DEFAULT_LEADERBOARD_LIMIT,
    ) -> list[LeaderboardRow]:
        require(auth, AuthorizationLevel.UNPRIVILEGED)
        return await self.ledger.query_leaderboard(guild_id, limit)

    async def inviter_history(
        self,
        guild_id: int,
        *,
        inviter_id: int | str,
        requester_id: int | str,
        auth: AuthorizationLevel,
        limit: int = DEFAULT_RECENT_INVITES_LIMIT,
    ) -> InviterReport:
        if str(inviter_id) != str(requester_id):
            require(auth, AuthorizationLevel.MODERATOR)
        total = await self.ledger.invite_count(guild_id, str(inviter_id))
        recent = await self.ledger.query_by_inviter(guild_id, str(inviter_id), limit) if total else []
        return InviterReport(inviter_id=str(inviter_id), total_invites=total, recent=recent)

    async def join_history(
        self,
        guild_id: int,
        auth: AuthorizationLevel,
        *,
        page: int = 1,
        per_page: int = DEFAULT_HISTORY_PAGE_SIZE,
    ) -> HistoryPage:
        require(auth, AuthorizationLevel.ADMINISTRATOR)
        return await self.ledger.query_history(guild_id, page=page, per_page=per_page)

    async def active_invites(self, guild_id: int, auth: AuthorizationLevel) -> ActiveInvitesReport:
        require(auth, AuthorizationLevel.MODERATOR)
        stale = False
        try:
            # The stored snapshot is the pre-join baseline; only the join pipeline advances it.
            current = await self.snapshots.fetch(guild_id)
        except FetchFailure:
            if not self.snapshots.has_snapshot(guild_id):
                raise
            log.warning("Serving cached invite list for guild_id=%s after fetch failure", guild_id)
            current = self.snapshots.get(guild_id)
            stale = True
        invites = sorted(current.values(), key=lambda invite: (-invite.uses, invite.code))
        return ActiveInvitesReport(invites=invites, stale=stale)


def authorization_denied_message(exc: AuthorizationError) -> str:
    if exc.required == AuthorizationLevel.ADMINISTRATOR.name:
        return "Only administrators can view the full invite history."
    return "You need administrator or manage server permissions to use this command!"
