from datetime import timezone
from typing import Any

from sqlalchemy import DateTime, TypeDecorator, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

class Base(DeclarativeBase):
    pass

class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on SQLite which drops the offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Any, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

def create_engine(database_url: str, timeout: float, echo: bool = False) -> AsyncEngine:
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        # busy timeout: writers wait for the lock instead of failing at once
        kwargs["connect_args"] = {"timeout": timeout}
        if url.database not in (None, "", ":memory:"):
            kwargs["pool_timeout"] = timeout
    else:
        kwargs["pool_timeout"] = timeout
        kwargs["pool_pre_ping"] = True
        if url.get_driver_name() == "asyncpg":
            kwargs["connect_args"] = {"timeout": timeout, "command_timeout": timeout}

    engine = create_async_engine(url, **kwargs)
    if url.get_backend_name() == "sqlite":
        _use_explicit_sqlite_transactions(engine)
    return engine

def _use_explicit_sqlite_transactions(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN until the first write, so two SELECTs would not
    # share a snapshot. Emit BEGIN ourselves and run in WAL mode so readers
    # never wait on a writer.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
