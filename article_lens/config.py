"""Application configuration."""

import logging
import os
from dataclasses import dataclass, fields, replace
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file from project root
load_dotenv()

logger = logging.getLogger(__name__)


class Settings:
    """Application settings from environment variables."""

    anthropic_api_key: str
    openai_api_key: str
    deepseek_api_key: str
    gemini_api_key: str
    ollama_base_url: str
    database_url: str
    redis_url: str
    otlp_endpoint: str
    analysis_concurrency: int
    model_call_timeout: float

    def __init__(self):
        self.anthropic_api_key = os.environ.get("ANTHROPIC_API_KEY", "")
        self.openai_api_key = os.environ.get("OPENAI_API_KEY", "")
        self.deepseek_api_key = os.environ.get("DEEPSEEK_API_KEY", "")
        self.gemini_api_key = os.environ.get("GEMINI_API_KEY", "")
        self.ollama_base_url = os.environ.get("OLLAMA_BASE_URL", "")
        self.database_url = os.environ.get(
            "DATABASE_URL", "sqlite+aiosqlite:///./article_lens.db"
        )
        self.redis_url = os.environ.get("REDIS_URL", "")
        self.otlp_endpoint = os.environ.get("OTLP_ENDPOINT", "http://localhost:4317")
        self.analysis_concurrency = max(1, int(os.environ.get("ANALYSIS_CONCURRENCY", "4")))
        self.model_call_timeout = float(os.environ.get("MODEL_CALL_TIMEOUT", "60"))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Options callers may pass as camelCase (as stored by the surrounding app)
_OPTION_ALIASES = {
    "segmentSize": "segment_size",
    "segmentOverlap": "segment_overlap",
    "enableReflection": "enable_reflection",
    "maxReflectionRounds": "max_reflection_rounds",
    "qualityThreshold": "quality_threshold",
    "analysisModel": "analysis_model",
    "reflectionModel": "reflection_model",
    "embeddingModel": "embedding_model",
    "deduplicatePoints": "deduplicate_points",
    "maxCostPer1k": "max_cost_per_1k",
}


@dataclass(frozen=True)
class AnalysisConfig:
    """Runtime options for one analysis pipeline."""

    segment_size: int = 3000
    segment_overlap: int = 200
    enable_reflection: bool = True
    max_reflection_rounds: int = 2
    quality_threshold: float = 7
    analysis_model: str = "deepseek-chat"
    reflection_model: str = "gpt-4o"
    embedding_model: str = "nomic-ai/nomic-embed-text-v1.5"
    deduplicate_points: bool = False
    max_cost_per_1k: float | None = None
    summary_top_n: int = 5
    tag_cap: int = 10

    def merged(self, overrides: dict | None = None) -> "AnalysisConfig":
        """Return a copy with recognised overrides applied.

        Accepts both snake_case field names and the camelCase option names.
        Unknown options are logged and ignored.
        """
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                logger.warning("Ignoring unknown analysis option %r", key)
                continue
            changes[name] = value
        return replace(self, **changes)


DEFAULT_ANALYSIS_CONFIG = AnalysisConfig()
