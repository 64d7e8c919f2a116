"""Shared pytest fixtures: a throwaway SQLite database per test."""

from collections.abc import AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from orgaccess.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from orgaccess.features.users.service import create_user
from orgaccess.main import app


@pytest.fixture()
def database_url(tmp_path) -> str:
    """Provide a file-backed SQLite database URL for one test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'orgaccess.sqlite'}"


@pytest_asyncio.fixture()
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(database_url)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def make_user(db: AsyncSession) -> Callable[..., Awaitable[str]]:
    """Create a user and return its id."""

    async def _make(display_name: str = "Test User", email: str | None = None) -> str:
        user = await create_user(db, {"display_name": display_name, "email": email})
        return user.id

    return _make


@pytest_asyncio.fixture()
async def async_client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to the app, with sessions drawn from the test database."""

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
