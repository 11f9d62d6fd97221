import typing
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer

from admission.app import app
from admission.config import Settings, get_settings
from admission.database import (
    build_engine,
    build_sessionmaker,
    create_tables,
    get_session,
)
from admission.events import dispatcher
from admission.models import Base
from admission.pool import seed_pool

POOL_SIZE = 5


@pytest.fixture(scope='session')
def anyio_backend() -> str:
    return 'asyncio'


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / 'tickets.db'


@pytest.fixture
def settings(tmp_path: Path, db_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f'sqlite+aiosqlite:///{db_path}',
        max_tickets=POOL_SIZE,
        event_name='Test Event',
        backup_dir=str(tmp_path / 'backups'),
    )


@pytest.fixture
async def async_engine(settings: Settings) -> typing.AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(settings.database_url)
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session_factory(
    async_engine: AsyncEngine, settings: Settings
) -> async_sessionmaker[AsyncSession]:
    factory = build_sessionmaker(async_engine)

    async with factory() as session:
        await seed_pool(session, settings.max_tickets)

    return factory


@pytest.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> typing.AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(
    async_session: AsyncSession, settings: Settings
) -> typing.AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_session] = lambda: async_session
    app.dependency_overrides[get_settings] = lambda: settings
    _transport = ASGITransport(app=app)

    async with AsyncClient(
        transport=_transport, base_url='http://test', follow_redirects=True
    ) as client:
        yield client

    app.dependency_overrides.clear()
    dispatcher.clear()


@pytest.fixture(scope='session')
def postgres_container(
    anyio_backend: typing.Literal['asyncio'],
) -> typing.Generator[PostgresContainer, None, None]:
    try:
        container = PostgresContainer('postgres:16', driver='asyncpg')
        container.start()
    except Exception as exc:
        pytest.skip(f'Docker is not available: {exc}')

    yield container

    container.stop()


@pytest.fixture
async def pg_session_factory(
    postgres_container: PostgresContainer,
) -> typing.AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = build_engine(postgres_container.get_connection_url())

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    factory = build_sessionmaker(engine)
    async with factory() as session:
        await seed_pool(session, POOL_SIZE)

    yield factory

    await engine.dispose()
