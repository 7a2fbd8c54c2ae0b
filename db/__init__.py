from db.models import REQUIRED_BOOT_TABLES
from db.repository import GuildSettingsRecord, InMemoryRepository, LedgerEntryRecord, LedgerRepository
from db.session import SessionManager, SINGLETON_LOCK_KEY
from db.sql_repository import SqlRepository

__all__ = [
    "GuildSettingsRecord",
    "InMemoryRepository",
    "LedgerEntryRecord",
    "LedgerRepository",
    "REQUIRED_BOOT_TABLES",
    "SessionManager",
    "SINGLETON_LOCK_KEY",
    "SqlRepository",
]
