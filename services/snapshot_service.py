from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping

from gateway.task_registry import GuildLockRegistry
from services.errors import FetchFailure


log = logging.getLogger("bitcraft.invites")

_NON_RETRYABLE_ERRORS = {"Forbidden", "NotFound"}
_EMPTY: Mapping[str, "InviteSnapshot"] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class InviteSnapshot:
    code: str
    uses: int
    inviter_id: str | None = None
    inviter_name: str | None = None
    max_uses: int = 0
    channel_id: int | None = None


InviteFetcher = Callable[[int], Awaitable[Iterable[InviteSnapshot]]]
SleepFn = Callable[[float], Awaitable[None]]


def normalize_snapshot(invite: InviteSnapshot) -> InviteSnapshot:
    uses = max(0, int(invite.uses or 0))
    inviter_id = str(invite.inviter_id) if invite.inviter_id not in (None, "") else None
    if uses == invite.uses and inviter_id == invite.inviter_id:
        return invite
    return InviteSnapshot(
        code=invite.code,
        uses=uses,
        inviter_id=inviter_id,
        inviter_name=invite.inviter_name,
        max_uses=invite.max_uses,
        channel_id=invite.channel_id,
    )


class InviteSnapshotStore:
    """Per-guild cache of the gateway's invite list.

    Snapshots are replaced copy-on-write, so a mapping handed out by ``get`` never
    changes underneath the caller. A failed refresh keeps the last known snapshot.
    """

    def __init__(
        self,
        fetcher: InviteFetcher,
        *,
        timeout_seconds: float = 10.0,
        retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self.timeout_seconds = float(timeout_seconds)
        self.retries = max(1, int(retries))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self._sleep = sleep
        self._snapshots: dict[int, Mapping[str, InviteSnapshot]] = {}
        self._refresh_locks = GuildLockRegistry()

    def get(self, guild_id: int) -> Mapping[str, InviteSnapshot]:
        return self._snapshots.get(int(guild_id), _EMPTY)

    def has_snapshot(self, guild_id: int) -> bool:
        return int(guild_id) in self._snapshots

    def known_guild_ids(self) -> list[int]:
        return sorted(self._snapshots)

    def forget(self, guild_id: int) -> None:
        self._snapshots.pop(int(guild_id), None)
        self._refresh_locks.discard(guild_id)

    def _install(self, guild_id: int, invites: Mapping[str, InviteSnapshot]) -> Mapping[str, InviteSnapshot]:
        view = MappingProxyType(dict(invites))
        self._snapshots[int(guild_id)] = view
        return view

    async def _fetch_with_retry(self, guild_id: int) -> dict[str, InviteSnapshot]:
        last_error: BaseException | None = None
        for attempt in range(1, self.retries + 1):
            try:
                fetched = await asyncio.wait_for(self._fetcher(guild_id), timeout=self.timeout_seconds)
                invites: dict[str, InviteSnapshot] = {}
                for invite in fetched:
                    invites[invite.code] = normalize_snapshot(invite)
                return invites
            except asyncio.TimeoutError as exc:
                last_error = exc
                log.warning(
                    "Invite fetch timed out guild_id=%s attempt=%s/%s timeout=%.1fs",
                    guild_id,
                    attempt,
                    self.retries,
                    self.timeout_seconds,
                )
            except Exception as exc:
                last_error = exc
                if exc.__class__.__name__ in _NON_RETRYABLE_ERRORS:
                    raise FetchFailure(guild_id, f"invite list not accessible: {exc}", attempts=attempt) from exc
                log.warning("Invite fetch failed guild_id=%s attempt=%s/%s: %s", guild_id, attempt, self.retries, exc)

            if attempt < self.retries and self.backoff_seconds > 0:
                await self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        reason = "timed out" if isinstance(last_error, asyncio.TimeoutError) else f"failed: {last_error}"
        raise FetchFailure(guild_id, f"invite fetch {reason}", attempts=self.retries) from last_error

    async def fetch(self, guild_id: int) -> Mapping[str, InviteSnapshot]:
        """Read the live invite list without replacing the stored snapshot."""
        invites = await self._fetch_with_retry(int(guild_id))
        return MappingProxyType(invites)

    async def refresh(self, guild_id: int) -> Mapping[str, InviteSnapshot]:
        async with self._refresh_locks.lock_for(guild_id):
            invites = await self._fetch_with_retry(int(guild_id))
            view = self._install(guild_id, invites)
        log.debug("Invite snapshot refreshed guild_id=%s invites=%s", guild_id, len(view))
        return view

    def apply_created(self, guild_id: int, invite: InviteSnapshot) -> None:
        current = dict(self.get(guild_id))
        current[invite.code] = normalize_snapshot(invite)
        self._install(guild_id, current)

    def apply_deleted(self, guild_id: int, code: str) -> None:
        current = self.get(guild_id)
        if code not in current:
            return
        remaining = {key: value for key, value in current.items() if key != code}
        self._install(guild_id, remaining)

    def apply(self, guild_id: int, event: "InviteEvent") -> None:
        if isinstance(event, InviteCreated):
            self.apply_created(guild_id, event.invite)
        elif isinstance(event, InviteDeleted):
            self.apply_deleted(guild_id, event.code)
        else:
            raise TypeError(f"Unsupported invite event: {event!r}")


@dataclass(frozen=True, slots=True)
class InviteCreated:
    invite: InviteSnapshot


@dataclass(frozen=True, slots=True)
class InviteDeleted:
    code: str


InviteEvent = InviteCreated | InviteDeleted
