"""Pytest configuration and shared fixtures."""

import os

# Set test environment variables before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_moodfeed.db"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["YOUTUBE_API_KEY"] = ""
os.environ["ADMIN_TOKEN"] = ""
os.environ["LLM_PROVIDER"] = "openai"

import pytest

from moodfeed.storage import Base, CorpusStore, build_engine, make_session_factory


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    """File-backed test database engine."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'moodfeed.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    return CorpusStore(session_factory)
