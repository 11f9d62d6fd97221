from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from admission.config import get_settings
from admission.models import Base

# Execution option read by the SQLite "begin" hook
BEGIN_MODE_OPTION = 'sqlite_begin_mode'


def build_engine(
    database_url: str, *, echo: bool = False, busy_timeout_ms: int = 5000
) -> AsyncEngine:
    engine = create_async_engine(database_url, echo=echo)
    if engine.dialect.name == 'sqlite':
        _configure_sqlite(engine, busy_timeout_ms)
    return engine


def _configure_sqlite(engine: AsyncEngine, busy_timeout_ms: int) -> None:
    @event.listens_for(engine.sync_engine, 'connect')
    def on_connect(dbapi_connection, connection_record):
        # The driver must not open transactions on its own, on_begin does it.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute(f'PRAGMA busy_timeout={int(busy_timeout_ms)}')
        cursor.close()

    @event.listens_for(engine.sync_engine, 'begin')
    def on_begin(conn):
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, 'DEFERRED')
        conn.exec_driver_sql(f'BEGIN {mode}')


def sqlite_path(database_url: str | URL) -> Path | None:
    url = make_url(database_url)
    if not url.get_backend_name() == 'sqlite':
        return None
    if not url.database or url.database == ':memory:':
        return None
    return Path(url.database)


async def create_tables(engine: AsyncEngine) -> None:
    path = sqlite_path(engine.url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


@asynccontextmanager
async def writer_transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block as one write transaction that holds the store's write lock.

    On SQLite this is ``BEGIN IMMEDIATE``: a second writer waits on the lock
    (up to the busy timeout) instead of failing half way through. Everything
    inside commits together or rolls back together.
    """
    async with session.begin():
        await session.connection(execution_options={BEGIN_MODE_OPTION: 'IMMEDIATE'})
        yield session


settings = get_settings()

engine = build_engine(
    settings.database_url,
    echo=settings.sql_echo,
    busy_timeout_ms=settings.sqlite_busy_timeout_ms,
)

AsyncSessionLocal = build_sessionmaker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
