from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class GuildSettings(Base):
    __tablename__ = "guild_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    invite_log_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    welcome_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class InviteLedgerEntry(Base):
    __tablename__ = "invite_ledger"
    __table_args__ = (
        Index("ix_invite_ledger_guild_inviter_joined", "guild_id", "inviter_id", "joined_at"),
        Index("ix_invite_ledger_guild_joined", "guild_id", "joined_at"),
    )

    # rows are insert-only; invite counts are always derived with COUNT(*)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    inviter_id: Mapped[str] = mapped_column(String(32), nullable=False)
    member_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    member_display_name: Mapped[str] = mapped_column(Text, nullable=False)
    invite_code: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ServerStatusSettings(Base):
    __tablename__ = "server_status_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    server_address: Mapped[str] = mapped_column(Text, nullable=False)
    server_port: Mapped[int] = mapped_column(Integer, nullable=False)
    update_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    status_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    players_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    performance_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stat_status_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stat_players_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stat_tps_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stat_memory_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    text_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


def mapped_public_table_names() -> tuple[str, ...]:
    return tuple(table.name for table in Base.metadata.sorted_tables)


REQUIRED_BOOT_TABLES = mapped_public_table_names()
