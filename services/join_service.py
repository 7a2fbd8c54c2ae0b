from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from db.repository import LedgerEntryRecord
from gateway.task_registry import GuildLockRegistry
from services.attribution_service import AttributionOutcome, AttributionResult, attribute
from services.errors import FetchFailure
from services.ledger_service import SENTINEL_INVITERS, InviteLedger, build_ledger_entry
from services.notification_service import UNKNOWN_USER_NAME, InviterDetails, JoinedMember, JoinNotifier
from services.snapshot_service import InviteSnapshotStore
from utils.time_utils import utc_now


log = logging.getLogger("bitcraft.invites")


@dataclass(frozen=True, slots=True)
class UserProfile:
    name: str | None
    avatar_url: str | None = None


VanityLookup = Callable[[int], Awaitable[str | None]]
ProfileLookup = Callable[[str], Awaitable[UserProfile | None]]


@dataclass(frozen=True, slots=True)
class JoinOutcome:
    result: AttributionResult
    entry: LedgerEntryRecord
    notified: bool
    snapshot_stale: bool = False


class MemberJoinPipeline:
    """Member join handling: snapshot diff, attribution, ledger append, then notification.

    Everything up to the ledger append runs under a per-guild lock so two joins in
    the same guild never diff against the same pre-join snapshot. The notification
    is sent after the lock is released and cannot fail the join.
    """

    def __init__(
        self,
        *,
        snapshots: InviteSnapshotStore,
        ledger: InviteLedger,
        notifier: JoinNotifier,
        vanity_lookup: VanityLookup | None = None,
        profile_lookup: ProfileLookup | None = None,
    ) -> None:
        self.snapshots = snapshots
        self.ledger = ledger
        self.notifier = notifier
        self._vanity_lookup = vanity_lookup
        self._profile_lookup = profile_lookup
        self._locks = GuildLockRegistry()

    def forget_guild(self, guild_id: int) -> None:
        self._locks.discard(guild_id)

    async def refresh_baseline(self, guild_id: int) -> None:
        async with self._locks.lock_for(guild_id):
            await self.snapshots.refresh(guild_id)

    async def handle_join(
        self,
        guild_id: int,
        member: JoinedMember,
        *,
        joined_at: datetime | None = None,
    ) -> JoinOutcome:
        joined = joined_at or utc_now()
        stale = False
        async with self._locks.lock_for(guild_id):
            cold = not self.snapshots.has_snapshot(guild_id)
            pre = self.snapshots.get(guild_id)
            try:
                post = await self.snapshots.refresh(guild_id)
            except FetchFailure as exc:
                log.warning("Attributing join without a fresh invite list guild_id=%s: %s", guild_id, exc)
                post = pre
                stale = True
            if cold:
                # nothing to diff against yet; the fresh list becomes the baseline
                log.warning("No invite baseline for guild_id=%s, join of member_id=%s", guild_id, member.member_id)
                pre = post

            result = attribute(pre, post)
            if result.outcome is AttributionOutcome.UNDETERMINED:
                vanity_code = await self._lookup_vanity(guild_id)
                if vanity_code:
                    result = attribute(pre, post, vanity_code_present=True, vanity_code=vanity_code)
            if result.ambiguous:
                log.info(
                    "Ambiguous attribution guild_id=%s member_id=%s candidates=%s chosen=%s",
                    guild_id,
                    member.member_id,
                    ",".join(result.candidates),
                    result.invite_code,
                )

            entry = build_ledger_entry(
                guild_id=guild_id,
                result=result,
                member_id=member.member_id,
                member_display_name=member.display_name,
                joined_at=joined,
            )
            stored = await self.ledger.append(entry)

        inviter = await self._inviter_details(guild_id, result, stored)
        notified = await self.notifier.notify(guild_id, result, member, inviter=inviter, joined_at=joined)
        return JoinOutcome(result=result, entry=stored, notified=notified, snapshot_stale=stale)

    async def _lookup_vanity(self, guild_id: int) -> str | None:
        if self._vanity_lookup is None:
            return None
        try:
            return await self._vanity_lookup(int(guild_id))
        except Exception as exc:
            log.debug("Vanity lookup failed guild_id=%s: %s", guild_id, exc)
            return None

    async def _inviter_details(
        self,
        guild_id: int,
        result: AttributionResult,
        entry: LedgerEntryRecord,
    ) -> InviterDetails | None:
        if result.outcome is not AttributionOutcome.ATTRIBUTED or entry.inviter_id in SENTINEL_INVITERS:
            return None
        try:
            total = await self.ledger.invite_count(guild_id, entry.inviter_id)
        except Exception:
            log.warning("Could not count invites for inviter_id=%s guild_id=%s", entry.inviter_id, guild_id, exc_info=True)
            total = 0

        snapshot = self.snapshots.get(guild_id).get(entry.invite_code)
        name = snapshot.inviter_name if snapshot is not None else None
        avatar_url = None
        if self._profile_lookup is not None:
            try:
                profile = await self._profile_lookup(entry.inviter_id)
            except Exception as exc:
                log.debug("Profile lookup failed user_id=%s: %s", entry.inviter_id, exc)
                profile = None
            if profile is not None:
                name = profile.name or name
                avatar_url = profile.avatar_url
        return InviterDetails(
            inviter_id=entry.inviter_id,
            name=name or UNKNOWN_USER_NAME,
            avatar_url=avatar_url,
            total_invites=total,
        )
