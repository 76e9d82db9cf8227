"""Learns per-user preference profiles from reading-session history."""

import asyncio
import json
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from article_lens.models.reading import ReadingSession, UserPreference, get_session_factory
from article_lens.schemas import (
    PreferredDepth,
    PreferredLength,
    ReadingSessionRecord,
    UserPreferenceProfile,
)
from article_lens.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

HISTORY_DAYS = 30

# Sessions shorter than this that were not completed say nothing about interest
MIN_ENGAGED_DWELL = 30
MIN_TOPIC_WEIGHT = 0.1

# Abandonment: left within seconds without scrolling
ABANDON_DWELL = 10
ABANDON_SCROLL = 0.2
ABANDONS_TO_EXCLUDE = 3
ENGAGED_DWELL = 120

DEEP_DWELL = 180
DEEP_COMPLETION = 0.6
LIGHT_DWELL = 60

SHORT_WORDS = 800
LONG_WORDS = 2500

# Distinct categories at which diversity saturates
DIVERSITY_CATEGORIES = 10


@dataclass
class ReadingStatistics:
    total_entries: int
    total_read_time: float
    avg_dwell_time: float
    completion_rate: float
    diversity_score: float


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class ReadingSessionStore(Protocol):
    async def recent_sessions(self, user_id: str, since: datetime) -> list[ReadingSessionRecord]: ...

    async def active_user_ids(self, since: datetime) -> list[str]: ...


class PreferenceStore(Protocol):
    async def get(self, user_id: str) -> UserPreferenceProfile | None: ...

    async def upsert(self, profile: UserPreferenceProfile, stats: ReadingStatistics) -> None: ...


class SqlReadingSessionStore:
    """Reading sessions from the ``reading_sessions`` table."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._factory = session_factory

    async def _session_factory(self) -> async_sessionmaker:
        return self._factory or await get_session_factory()

    async def recent_sessions(self, user_id: str, since: datetime) -> list[ReadingSessionRecord]:
        factory = await self._session_factory()
        async with factory() as session:
            result = await session.execute(
                select(ReadingSession)
                .where(ReadingSession.user_id == user_id)
                .where(ReadingSession.started_at >= since)
                .order_by(ReadingSession.started_at.desc())
            )
            rows = result.scalars().all()

        return [
            ReadingSessionRecord(
                user_id=row.user_id,
                entry_id=row.entry_id,
                dwell_time=row.dwell_time or 0.0,
                scroll_depth=row.scroll_depth or 0.0,
                is_completed=bool(row.is_completed),
                is_starred=bool(row.is_starred),
                rating=row.rating,
                tags=json.loads(row.tags) if row.tags else [],
                category=row.category,
                word_count=row.word_count,
                started_at=row.started_at,
            )
            for row in rows
        ]

    async def active_user_ids(self, since: datetime) -> list[str]:
        factory = await self._session_factory()
        async with factory() as session:
            result = await session.execute(
                select(ReadingSession.user_id).where(ReadingSession.started_at >= since).distinct()
            )
            return list(result.scalars().all())


class SqlPreferenceStore:
    """Preference profiles in the ``user_preferences`` table, one row per user."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._factory = session_factory

    async def _session_factory(self) -> async_sessionmaker:
        return self._factory or await get_session_factory()

    async def get(self, user_id: str) -> UserPreferenceProfile | None:
        factory = await self._session_factory()
        async with factory() as session:
            result = await session.execute(select(UserPreference).where(UserPreference.user_id == user_id))
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return UserPreferenceProfile(
            user_id=row.user_id,
            topic_weights=json.loads(row.topic_weights or "{}"),
            preferred_depth=row.preferred_depth or "medium",
            preferred_length=row.preferred_length or "medium",
            excluded_tags=json.loads(row.excluded_tags or "[]"),
            avg_dwell_time=row.avg_dwell_time or 0.0,
            completion_rate=row.completion_rate or 0.0,
            diversity_score=row.diversity_score or 0.0,
            updated_at=row.updated_at or datetime.now(),
        )

    async def upsert(self, profile: UserPreferenceProfile, stats: ReadingStatistics) -> None:
        factory = await self._session_factory()
        async with factory() as session:
            result = await session.execute(
                select(UserPreference).where(UserPreference.user_id == profile.user_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = UserPreference(user_id=profile.user_id)
                session.add(row)

            row.topic_weights = json.dumps(profile.topic_weights)
            row.preferred_depth = profile.preferred_depth
            row.preferred_length = profile.preferred_length
            row.excluded_tags = json.dumps(profile.excluded_tags)
            row.avg_dwell_time = stats.avg_dwell_time
            row.completion_rate = stats.completion_rate
            row.diversity_score = stats.diversity_score
            row.total_entries = stats.total_entries
            row.total_read_time = stats.total_read_time
            row.updated_at = profile.updated_at
            await session.commit()


# ---------------------------------------------------------------------------
# Behaviour analysis
# ---------------------------------------------------------------------------


def reading_score(session: ReadingSessionRecord) -> float:
    """Engagement score of one session, 0-8.

    Dwell time up to 2 (full at 120s), scroll depth up to 2, completion 2,
    star 1, and a rating of 4 or more 1.
    """
    score = min(2.0, max(0.0, session.dwell_time) / 120)
    score += min(1.0, max(0.0, session.scroll_depth)) * 2
    if session.is_completed:
        score += 2
    if session.is_starred:
        score += 1
    if session.rating is not None and session.rating >= 4:
        score += 1
    return score


def _session_topics(session: ReadingSessionRecord) -> list[str]:
    topics = [t for t in session.tags if t]
    if session.category:
        topics.append(session.category)
    return [t.lower() for t in topics]


def analyze_topic_weights(sessions: list[ReadingSessionRecord]) -> dict[str, float]:
    """Tag/category weights normalized by the strongest one; weak topics dropped."""
    tag_scores: dict[str, float] = {}
    for session in sessions:
        if not session.is_completed and session.dwell_time < MIN_ENGAGED_DWELL:
            continue
        score = reading_score(session)
        for topic in _session_topics(session):
            tag_scores[topic] = tag_scores.get(topic, 0.0) + score

    max_score = max([*tag_scores.values(), 1.0])
    return {
        tag: round(min(1.0, score / max_score), 3)
        for tag, score in tag_scores.items()
        if score / max_score > MIN_TOPIC_WEIGHT
    }


def analyze_excluded_tags(sessions: list[ReadingSessionRecord]) -> list[str]:
    """Tags the user abandoned almost immediately at least three times."""
    abandons: Counter[str] = Counter()
    for session in sessions:
        if session.dwell_time > ENGAGED_DWELL or session.is_completed:
            continue
        if session.dwell_time < ABANDON_DWELL and session.scroll_depth < ABANDON_SCROLL:
            abandons.update(t.lower() for t in session.tags if t)
    return sorted(tag for tag, count in abandons.items() if count >= ABANDONS_TO_EXCLUDE)


def analyze_reading_preferences(
    sessions: list[ReadingSessionRecord],
) -> tuple[PreferredDepth, PreferredLength]:
    if not sessions:
        return "medium", "medium"

    avg_dwell = sum(s.dwell_time for s in sessions) / len(sessions)
    completion = sum(1 for s in sessions if s.is_completed) / len(sessions)

    depth: PreferredDepth
    if avg_dwell > DEEP_DWELL and completion > DEEP_COMPLETION:
        depth = "deep"
    elif avg_dwell < LIGHT_DWELL:
        depth = "light"
    else:
        depth = "medium"

    # Length from what the user actually finishes, when word counts are known
    finished = [s.word_count for s in sessions if s.is_completed and s.word_count]
    counted = finished or [s.word_count for s in sessions if s.word_count]
    length: PreferredLength = "medium"
    if counted:
        avg_words = sum(counted) / len(counted)
        if avg_words < SHORT_WORDS:
            length = "short"
        elif avg_words > LONG_WORDS:
            length = "long"

    return depth, length


def calculate_statistics(sessions: list[ReadingSessionRecord]) -> ReadingStatistics:
    total = len(sessions)
    total_read_time = sum(s.dwell_time for s in sessions)
    completed = sum(1 for s in sessions if s.is_completed)
    categories = {s.category for s in sessions if s.category}
    return ReadingStatistics(
        total_entries=total,
        total_read_time=total_read_time,
        avg_dwell_time=round(total_read_time / total) if total else 0,
        completion_rate=round(completed / total, 2) if total else 0.0,
        diversity_score=round(min(1.0, len(categories) / DIVERSITY_CATEGORIES), 2),
    )


class PreferenceLearner:
    """Recomputes preference profiles; recomputations for one user never overlap."""

    def __init__(
        self,
        sessions: ReadingSessionStore | None = None,
        preferences: PreferenceStore | None = None,
        history_days: int = HISTORY_DAYS,
    ):
        self._sessions = sessions or SqlReadingSessionStore()
        self._preferences = preferences or SqlPreferenceStore()
        self.history_days = history_days
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        """Serialize updates per user; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    async def update_user_preferences(self, user_id: str) -> UserPreferenceProfile | None:
        """Recompute and upsert a user's profile from recent sessions.

        Returns the new profile, or None when there is no history or the
        update failed. Never raises.
        """
        async with self._user_lock(user_id):
            try:
                with tracer.start_as_current_span("update_preferences", attributes={"user.id": user_id}):
                    since = datetime.now() - timedelta(days=self.history_days)
                    sessions = await self._sessions.recent_sessions(user_id, since)
                    if not sessions:
                        return None

                    depth, length = analyze_reading_preferences(sessions)
                    stats = calculate_statistics(sessions)
                    profile = UserPreferenceProfile(
                        user_id=user_id,
                        topic_weights=analyze_topic_weights(sessions),
                        preferred_depth=depth,
                        preferred_length=length,
                        excluded_tags=analyze_excluded_tags(sessions),
                        avg_dwell_time=stats.avg_dwell_time,
                        completion_rate=stats.completion_rate,
                        diversity_score=stats.diversity_score,
                        updated_at=datetime.now(),
                    )
                    await self._preferences.upsert(profile, stats)
                    logger.info(
                        "Updated preferences for %s from %d sessions (%d topics)",
                        user_id,
                        len(sessions),
                        len(profile.topic_weights),
                    )
                    return profile
            except Exception as e:
                logger.exception("Failed to update preferences for %s: %s", user_id, e)
                return None

    async def get_user_profile(self, user_id: str) -> UserPreferenceProfile:
        """Stored profile, or a default empty one for users without history."""
        profile = await self._preferences.get(user_id)
        return profile or UserPreferenceProfile(user_id=user_id)

    async def batch_update(self, user_ids: list[str]) -> int:
        """Update several users concurrently; returns how many got a new profile."""
        results = await asyncio.gather(*(self.update_user_preferences(u) for u in user_ids))
        return sum(1 for r in results if r is not None)

    async def refresh_active_users(self, days: int = HISTORY_DAYS) -> int:
        """Recompute profiles for every user who read something in the last ``days``."""
        since = datetime.now() - timedelta(days=days)
        user_ids = await self._sessions.active_user_ids(since)
        logger.info("Refreshing preferences for %d active users", len(user_ids))
        return await self.batch_update(user_ids)


# Singleton instance
_learner: PreferenceLearner | None = None


def get_preference_learner() -> PreferenceLearner:
    """Get or create the preference learner singleton."""
    global _learner
    if _learner is None:
        _learner = PreferenceLearner()
    return _learner
