"""
Pytest configuration and fixtures.
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from scrum_update.api import deps
from scrum_update.clients.chat_client import DummyChatClient
from scrum_update.database.config import create_engine_for_url, create_session_factory, init_db
from scrum_update.main import app
from scrum_update.services.identity import StaticUserContext
from scrum_update.services.scrum_generator import ScrumGenerator
from scrum_update.services.session_store import KeyedLocks, SessionStore


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database, fresh per test."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'scrum.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def user_context() -> StaticUserContext:
    return StaticUserContext("user-1")


@pytest.fixture
def other_user_context() -> StaticUserContext:
    return StaticUserContext("user-2")


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession],
    user_context: StaticUserContext,
) -> SessionStore:
    return SessionStore(session_factory, user_context, locks=KeyedLocks())


@pytest.fixture
def other_store(
    session_factory: async_sessionmaker[AsyncSession],
    other_user_context: StaticUserContext,
) -> SessionStore:
    return SessionStore(session_factory, other_user_context, locks=KeyedLocks())


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    user_context: StaticUserContext,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing, wired to the test database."""
    generator = ScrumGenerator()
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_user_context] = lambda: user_context
    app.dependency_overrides[deps.get_chat_client] = lambda: DummyChatClient(delay_ms=0)
    app.dependency_overrides[deps.get_scrum_generator] = lambda: generator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
