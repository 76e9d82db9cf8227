"""Database models."""

from article_lens.models.reading import (
    ApiUsageLog,
    Base,
    ReadingSession,
    UserPreference,
)

__all__ = [
    "ApiUsageLog",
    "Base",
    "ReadingSession",
    "UserPreference",
]
