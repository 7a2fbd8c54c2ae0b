from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, insert, select

from db.models import GuildSettings, InviteLedgerEntry, ServerStatusSettings
from db.repository import STATUS_CHANNEL_FIELDS, GuildSettingsRecord, LedgerEntryRecord, ServerStatusSettingsRecord
from db.session import SessionManager
from utils.time_utils import as_utc


def _entry_from_row(row: InviteLedgerEntry) -> LedgerEntryRecord:
    return LedgerEntryRecord(
        id=int(row.id),
        guild_id=int(row.guild_id),
        inviter_id=str(row.inviter_id),
        member_id=int(row.member_id),
        member_display_name=str(row.member_display_name),
        invite_code=str(row.invite_code),
        outcome=str(row.outcome),
        joined_at=as_utc(row.joined_at),
    )


def _status_settings_from_row(row: ServerStatusSettings) -> ServerStatusSettingsRecord:
    channels = {name: getattr(row, name) for name in STATUS_CHANNEL_FIELDS}
    return ServerStatusSettingsRecord(
        guild_id=int(row.guild_id),
        server_address=str(row.server_address),
        server_port=int(row.server_port),
        update_interval_seconds=int(row.update_interval_seconds),
        **{name: int(value) if value else None for name, value in channels.items()},
    )


class SqlRepository:
    """Ledger and settings storage on the async SQLAlchemy engine.

    Every ledger append is its own INSERT committed before the call returns, so a
    crash can only lose the row being written and never rewrites committed rows.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self.session_manager = session_manager

    async def insert_ledger_entry(self, entry: LedgerEntryRecord) -> LedgerEntryRecord:
        values = {
            "guild_id": int(entry.guild_id),
            "inviter_id": str(entry.inviter_id),
            "member_id": int(entry.member_id),
            "member_display_name": entry.member_display_name,
            "invite_code": entry.invite_code,
            "outcome": entry.outcome,
            "joined_at": as_utc(entry.joined_at),
        }
        async with self.session_manager.session_scope() as session:
            result = await session.execute(insert(InviteLedgerEntry).values(**values).returning(InviteLedgerEntry.id))
            new_id = int(result.scalar_one())
        return LedgerEntryRecord(id=new_id, **values)

    async def count_by_inviter(self, guild_id: int) -> dict[str, int]:
        statement = (
            select(InviteLedgerEntry.inviter_id, func.count(InviteLedgerEntry.id))
            .where(InviteLedgerEntry.guild_id == int(guild_id))
            .group_by(InviteLedgerEntry.inviter_id)
        )
        async with self.session_manager.session_scope() as session:
            result = await session.execute(statement)
            return {str(inviter_id): int(count) for inviter_id, count in result.all()}

    async def count_for_inviter(self, guild_id: int, inviter_id: str) -> int:
        statement = select(func.count(InviteLedgerEntry.id)).where(
            InviteLedgerEntry.guild_id == int(guild_id),
            InviteLedgerEntry.inviter_id == str(inviter_id),
        )
        async with self.session_manager.session_scope() as session:
            return int((await session.execute(statement)).scalar_one())

    async def list_by_inviter(self, guild_id: int, inviter_id: str, *, limit: int) -> list[LedgerEntryRecord]:
        statement = (
            select(InviteLedgerEntry)
            .where(
                InviteLedgerEntry.guild_id == int(guild_id),
                InviteLedgerEntry.inviter_id == str(inviter_id),
            )
            .order_by(InviteLedgerEntry.joined_at.desc(), InviteLedgerEntry.id.desc())
            .limit(max(0, int(limit)))
        )
        async with self.session_manager.session_scope() as session:
            rows = (await session.execute(statement)).scalars().all()
            return [_entry_from_row(row) for row in rows]

    async def list_for_guild(
        self,
        guild_id: int,
        *,
        limit: int,
        offset: int = 0,
        exclude_inviters: Iterable[str] = (),
    ) -> list[LedgerEntryRecord]:
        statement = select(InviteLedgerEntry).where(InviteLedgerEntry.guild_id == int(guild_id))
        excluded = sorted({str(value) for value in exclude_inviters})
        if excluded:
            statement = statement.where(InviteLedgerEntry.inviter_id.not_in(excluded))
        statement = (
            statement.order_by(InviteLedgerEntry.joined_at.desc(), InviteLedgerEntry.id.desc())
            .offset(max(0, int(offset)))
            .limit(max(0, int(limit)))
        )
        async with self.session_manager.session_scope() as session:
            rows = (await session.execute(statement)).scalars().all()
            return [_entry_from_row(row) for row in rows]

    async def count_for_guild(self, guild_id: int, *, exclude_inviters: Iterable[str] = ()) -> int:
        statement = select(func.count(InviteLedgerEntry.id)).where(InviteLedgerEntry.guild_id == int(guild_id))
        excluded = sorted({str(value) for value in exclude_inviters})
        if excluded:
            statement = statement.where(InviteLedgerEntry.inviter_id.not_in(excluded))
        async with self.session_manager.session_scope() as session:
            return int((await session.execute(statement)).scalar_one())

    async def get_settings(self, guild_id: int) -> GuildSettingsRecord | None:
        async with self.session_manager.session_scope() as session:
            row = await session.get(GuildSettings, int(guild_id))
            if row is None:
                return None
            return GuildSettingsRecord(
                guild_id=int(row.guild_id),
                guild_name=row.guild_name,
                invite_log_channel_id=int(row.invite_log_channel_id) if row.invite_log_channel_id else None,
                welcome_channel_id=int(row.welcome_channel_id) if row.welcome_channel_id else None,
            )

    async def save_settings(self, settings: GuildSettingsRecord) -> GuildSettingsRecord:
        async with self.session_manager.session_scope() as session:
            row = await session.get(GuildSettings, int(settings.guild_id))
            if row is None:
                row = GuildSettings(guild_id=int(settings.guild_id))
                session.add(row)
            row.guild_name = settings.guild_name
            row.invite_log_channel_id = settings.invite_log_channel_id
            row.welcome_channel_id = settings.welcome_channel_id
        return GuildSettingsRecord(
            guild_id=int(settings.guild_id),
            guild_name=settings.guild_name,
            invite_log_channel_id=settings.invite_log_channel_id,
            welcome_channel_id=settings.welcome_channel_id,
        )

    async def get_status_settings(self, guild_id: int) -> ServerStatusSettingsRecord | None:
        async with self.session_manager.session_scope() as session:
            row = await session.get(ServerStatusSettings, int(guild_id))
            return _status_settings_from_row(row) if row is not None else None

    async def save_status_settings(self, settings: ServerStatusSettingsRecord) -> ServerStatusSettingsRecord:
        async with self.session_manager.session_scope() as session:
            row = await session.get(ServerStatusSettings, int(settings.guild_id))
            if row is None:
                row = ServerStatusSettings(guild_id=int(settings.guild_id))
                session.add(row)
            row.server_address = settings.server_address
            row.server_port = int(settings.server_port)
            row.update_interval_seconds = int(settings.update_interval_seconds)
            for name in STATUS_CHANNEL_FIELDS:
                setattr(row, name, getattr(settings, name))
        return ServerStatusSettingsRecord(
            guild_id=int(settings.guild_id),
            server_address=settings.server_address,
            server_port=int(settings.server_port),
            update_interval_seconds=int(settings.update_interval_seconds),
            **{name: getattr(settings, name) for name in STATUS_CHANNEL_FIELDS},
        )

    async def list_status_settings(self) -> list[ServerStatusSettingsRecord]:
        statement = select(ServerStatusSettings).order_by(ServerStatusSettings.guild_id)
        async with self.session_manager.session_scope() as session:
            rows = (await session.execute(statement)).scalars().all()
            return [_status_settings_from_row(row) for row in rows]
