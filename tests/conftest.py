"""Shared test fixtures for article_lens tests."""

import os

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Override DATABASE_URL before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = ""
for _key in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "DEEPSEEK_API_KEY", "GEMINI_API_KEY"):
    os.environ.setdefault(_key, "test-key")

from article_lens.models import Base  # noqa: E402
from tests.factories import FakeModelClient, segment_answer  # noqa: E402


@pytest.fixture
async def engine():
    """Create an in-memory SQLite engine for testing."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as sess:
        yield sess


@pytest.fixture
def fake_client() -> FakeModelClient:
    """A model client with well-formed answers for every call site."""
    return FakeModelClient(
        answers={
            "segment": segment_answer(),
            "summary": {"oneLine": "A one-line summary", "full": "A longer summary of the article."},
            "reflection": {"quality": 8.5, "issues": [], "suggestions": [], "needsRefinement": False},
            "improvement": {"summary": "Improved summary"},
        }
    )
