from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bot.config import BotConfig


log = logging.getLogger("bitcraft.db")

SINGLETON_LOCK_KEY = 73104522
MAX_REDACT_COLLECTION_ITEMS = 20


def _redact_sql_scalar(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, bool):
        return "<bool>"
    if isinstance(value, int):
        return "<int>"
    if isinstance(value, float):
        return "<float>"
    if isinstance(value, (str, bytes, bytearray, memoryview)):
        return "<redacted>"
    if isinstance(value, (datetime, date)):
        return f"<{value.__class__.__name__}>"
    return f"<{value.__class__.__name__}>"


def redact_sql_parameters(parameters: object, *, _depth: int = 0) -> object:
    """Replace bound values with type tags so member names never reach the log."""
    if _depth >= 4:
        return "<max-depth>"

    if isinstance(parameters, dict):
        out: dict[str, object] = {}
        for index, (key, value) in enumerate(parameters.items()):
            if index >= MAX_REDACT_COLLECTION_ITEMS:
                out["..."] = f"+{len(parameters) - MAX_REDACT_COLLECTION_ITEMS} more"
                break
            out[str(key)] = redact_sql_parameters(value, _depth=_depth + 1)
        return out

    if isinstance(parameters, (list, tuple)):
        redacted = [
            redact_sql_parameters(value, _depth=_depth + 1)
            for value in parameters[:MAX_REDACT_COLLECTION_ITEMS]
        ]
        if len(parameters) > MAX_REDACT_COLLECTION_ITEMS:
            redacted.append(f"... +{len(parameters) - MAX_REDACT_COLLECTION_ITEMS} more")
        return tuple(redacted) if isinstance(parameters, tuple) else redacted

    return _redact_sql_scalar(parameters)


class SessionManager:
    def __init__(self, config: BotConfig, *, engine: AsyncEngine | None = None):
        self._engine = engine or create_async_engine(
            config.database_url,
            echo=config.db_echo,
            pool_pre_ping=True,
        )
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        self._install_sql_logging()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    def _install_sql_logging(self) -> None:
        @event.listens_for(self._engine.sync_engine, "before_cursor_execute")
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if not log.isEnabledFor(logging.DEBUG):
                return
            context._query_started_at = time.perf_counter()
            log.debug("[to-db] SQL=%s params=%s", statement, redact_sql_parameters(parameters))

        @event.listens_for(self._engine.sync_engine, "after_cursor_execute")
        def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if not log.isEnabledFor(logging.DEBUG):
                return
            started_at = getattr(context, "_query_started_at", None)
            if isinstance(started_at, (int, float)):
                log.debug("[from-db] rows=%s took=%.2fms", cursor.rowcount, (time.perf_counter() - started_at) * 1000)
            else:
                log.debug("[from-db] rows=%s", cursor.rowcount)

        @event.listens_for(self._engine.sync_engine, "handle_error")
        def on_sqlalchemy_error(exception_context):
            log.error("[from-db] query failed: %s", exception_context.original_exception)

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def try_acquire_singleton_lock(self) -> bool:
        # advisory locks only exist on PostgreSQL; a local SQLite file has a single writer anyway
        if self.dialect_name != "postgresql":
            return True
        async with self._engine.begin() as conn:
            result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": SINGLETON_LOCK_KEY})
            return bool(result.scalar())

    async def dispose(self) -> None:
        await self._engine.dispose()
