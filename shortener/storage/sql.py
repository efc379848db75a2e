import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .. import crud
from ..database import Base, create_engine, create_sessionmaker
from ..domain import ClickEvent, UrlMapping
from ..errors import ShortcodeConflict, StorageError
from .base import ClickLedger, ShortcodeRegistry, Store, UnitOfWork

logger = logging.getLogger(__name__)

STORAGE_FAILURES = (SQLAlchemyError, OSError, asyncio.TimeoutError)


class SqlShortcodeRegistry(ShortcodeRegistry):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, code: str) -> bool:
        return await crud.mapping_exists(self.session, code)

    async def get(self, code: str) -> Optional[UrlMapping]:
        record = await crud.get_mapping(self.session, code)
        return UrlMapping.model_validate(record) if record else None

    async def put(self, mapping: UrlMapping) -> None:
        await crud.upsert_mapping(self.session, mapping)

    async def add(self, mapping: UrlMapping) -> None:
        try:
            await crud.create_mapping(self.session, mapping)
        except IntegrityError as e:
            # Race condition: another writer inserted the same key first
            raise ShortcodeConflict(f"Shortcode '{mapping.shortcode}' is already in use") from e

    async def increment_clicks(self, code: str) -> None:
        await crud.increment_click_count(self.session, code)

    async def list_all(self) -> List[UrlMapping]:
        return [UrlMapping.model_validate(r) for r in await crud.list_mappings(self.session)]


class SqlClickLedger(ClickLedger):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, shortcode: str, event: ClickEvent) -> None:
        if event.shortcode != shortcode:
            event = event.model_copy(update={"shortcode": shortcode})
        await crud.add_click(self.session, event)

    async def history(self, shortcode: str) -> List[ClickEvent]:
        return [ClickEvent.model_validate(r) for r in await crud.list_clicks(self.session, shortcode)]


class SqlStore(Store):
    """
    SQLAlchemy-backed store.

    PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) for local runs
    and tests. Tables are created on open().
    """

    def __init__(self, database_url: str, timeout: float = 5.0, echo: bool = False):
        self.database_url = database_url
        self.timeout = timeout
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    async def open(self) -> None:
        if self._engine is not None:
            return
        engine = create_engine(self.database_url, timeout=self.timeout, echo=self.echo)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except STORAGE_FAILURES as e:
            await engine.dispose()
            raise StorageError(f"Could not open database: {e}") from e
        self._engine = engine
        self._sessionmaker = create_sessionmaker(engine)
        logger.info("SQL store opened (%s)", engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("SQL store closed")

    def _new_session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise StorageError("Store is not open")
        return self._sessionmaker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        session = self._new_session()
        try:
            async with session.begin():
                yield UnitOfWork(SqlShortcodeRegistry(session), SqlClickLedger(session))
        except STORAGE_FAILURES as e:
            raise StorageError(str(e)) from e
        finally:
            await session.close()

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[UnitOfWork]:
        session = self._new_session()
        try:
            if self._engine.dialect.name == "postgresql":
                await session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
            yield UnitOfWork(SqlShortcodeRegistry(session), SqlClickLedger(session))
        except STORAGE_FAILURES as e:
            raise StorageError(str(e)) from e
        finally:
            # read-only: closing rolls the transaction back
            await session.close()
