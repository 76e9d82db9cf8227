"""SQLAlchemy models for reading sessions, preference profiles, and API usage."""

import logging
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from article_lens.config import get_settings
from article_lens.tracing import instrument_engine

logger = logging.getLogger(__name__)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class ReadingSession(Base):
    """One user's reading of one entry, as recorded by the behaviour tracker."""

    __tablename__ = "reading_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50))
    entry_id: Mapped[str] = mapped_column(String(50))
    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    # Engagement signals
    dwell_time: Mapped[float] = mapped_column(Float, default=0.0)  # seconds
    scroll_depth: Mapped[float] = mapped_column(Float, default=0.0)  # 0-1
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, default=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5

    # Entry metadata copied at read time
    tags: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_sessions_user_started", "user_id", "started_at"),
        Index("idx_sessions_entry", "entry_id"),
    )

    def __repr__(self) -> str:
        return f"<ReadingSession(id={self.id}, user_id='{self.user_id}', entry_id='{self.entry_id}')>"


class UserPreference(Base):
    """Learned preference profile for one user (upserted on recomputation)."""

    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50), unique=True)

    topic_weights: Mapped[str] = mapped_column(Text, default="{}")  # JSON tag -> weight
    preferred_depth: Mapped[str] = mapped_column(String(10), default="medium")
    preferred_length: Mapped[str] = mapped_column(String(10), default="medium")
    excluded_tags: Mapped[str] = mapped_column(Text, default="[]")  # JSON list

    # Aggregate statistics
    avg_dwell_time: Mapped[float] = mapped_column(Float, default=0.0)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0)
    diversity_score: Mapped[float] = mapped_column(Float, default=0.0)
    total_entries: Mapped[int] = mapped_column(Integer, default=0)
    total_read_time: Mapped[float] = mapped_column(Float, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (Index("idx_preferences_updated", "updated_at"),)


class ApiUsageLog(Base):
    """Log of model API usage for cost tracking."""

    __tablename__ = "api_usage_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    service: Mapped[str] = mapped_column(String(30))  # segment, summary, reflection, ...
    model: Mapped[str] = mapped_column(String(50))
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    article_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_usage_timestamp", "timestamp"),
        Index("idx_usage_service", "service"),
    )


_engine = None
_session_factory = None


async def get_engine():
    """Return the shared async engine, creating and instrumenting it on first use."""
    global _engine
    if _engine is None:
        url = get_settings().database_url
        # SQLite waits up to 30s on a locked file instead of failing the write
        connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
        _engine = create_async_engine(url, echo=False, connect_args=connect_args)
        instrument_engine(_engine)
    return _engine


async def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(await get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db():
    """Create missing tables; file-backed SQLite is switched to WAL first."""
    engine = await get_engine()
    async with engine.begin() as conn:
        if engine.dialect.name == "sqlite":
            await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Reading-history tables ready at %s", engine.url.render_as_string(hide_password=True))
