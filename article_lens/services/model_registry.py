"""Model backend registry and cost-aware model selection."""

import logging
import math
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

Stage = Literal["preliminary", "analysis", "reflection"]
Priority = Literal["cost", "quality", "speed"]

DEFAULT_MODEL = "gpt-4o-mini"

# Minimum quality a model needs to run the reflection stage
REFLECTION_MIN_QUALITY = 8


@dataclass(frozen=True)
class ModelTierConfig:
    """Cost, quality, and speed profile of one model backend."""

    provider: str  # openai, anthropic, deepseek, gemini, ollama, custom
    model: str  # provider-side model name
    max_tokens: int
    cost_per_1k_tokens: float  # USD
    quality: int  # 1-10
    speed: int  # 1-10


BUILTIN_MODELS: dict[str, ModelTierConfig] = {
    # OpenAI
    "gpt-4o": ModelTierConfig("openai", "gpt-4o", 128000, 0.005, 9, 8),
    "gpt-4o-mini": ModelTierConfig("openai", "gpt-4o-mini", 128000, 0.00015, 7, 9),
    "gpt-4-turbo": ModelTierConfig("openai", "gpt-4-turbo", 128000, 0.01, 8, 7),
    "gpt-3.5-turbo": ModelTierConfig("openai", "gpt-3.5-turbo", 16385, 0.0005, 6, 9),
    # Anthropic
    "claude-3-5-sonnet": ModelTierConfig(
        "anthropic", "claude-3-5-sonnet-20241022", 200000, 0.003, 9, 7
    ),
    "claude-3-haiku": ModelTierConfig("anthropic", "claude-3-haiku-20240307", 200000, 0.00025, 6, 10),
    "claude-3-opus": ModelTierConfig("anthropic", "claude-3-opus-20240229", 200000, 0.015, 10, 5),
    # DeepSeek (¥1/1M tokens ≈ $0.14/1M)
    "deepseek-chat": ModelTierConfig("deepseek", "deepseek-chat", 128000, 0.00014, 8, 8),
    "deepseek-coder": ModelTierConfig("deepseek", "deepseek-coder", 128000, 0.00014, 8, 8),
    # Gemini
    "gemini-1.5-flash": ModelTierConfig("gemini", "gemini-1.5-flash", 1000000, 0.000075, 7, 10),
    "gemini-1.5-pro": ModelTierConfig("gemini", "gemini-1.5-pro", 2000000, 0.0035, 9, 7),
    "gemini-pro": ModelTierConfig("gemini", "gemini-pro", 32000, 0.00025, 7, 8),
    # Ollama (local, free)
    "llama3": ModelTierConfig("ollama", "llama3", 8192, 0.0, 6, 5),
    "mistral": ModelTierConfig("ollama", "mistral", 8192, 0.0, 6, 6),
}

# Candidate shortlists per language family, cheapest-first for the family
_SHORTLISTS: dict[str, list[str]] = {
    "chinese": ["deepseek-chat", "deepseek-coder", "gpt-4o-mini", "claude-3-haiku"],
    "western": ["gemini-1.5-flash", "gemini-1.5-pro", "gpt-4o-mini", "gpt-4o"],
    "other": ["gpt-4o-mini", "gemini-1.5-flash", "claude-3-haiku"],
}

_WESTERN_LANGUAGES = ("en", "es", "fr", "de", "pt", "it")


def language_family(language: str) -> str:
    """Map a language code to a shortlist family."""
    if language.startswith("zh"):
        return "chinese"
    if language.startswith(_WESTERN_LANGUAGES):
        return "western"
    return "other"


class ModelRegistry:
    """Built-in model configs plus entries registered at runtime.

    Registered entries shadow built-ins with the same key. Registration is
    expected to happen at startup; callers must serialize concurrent writes.
    """

    def __init__(self, builtins: dict[str, ModelTierConfig] | None = None):
        self._builtins = dict(BUILTIN_MODELS if builtins is None else builtins)
        self._custom: dict[str, ModelTierConfig] = {}

    def register(self, key: str, config: ModelTierConfig) -> None:
        self._custom[key] = config
        logger.info("Registered model %s (%s/%s)", key, config.provider, config.model)

    def lookup(self, key: str) -> ModelTierConfig | None:
        return self._custom.get(key) or self._builtins.get(key)

    def get(self, key: str) -> ModelTierConfig:
        """Config for a key, falling back to the default model for unknown keys."""
        config = self.lookup(key)
        if config is None:
            logger.warning("Unknown model %r, falling back to %s", key, DEFAULT_MODEL)
            config = self._custom.get(DEFAULT_MODEL) or self._builtins[DEFAULT_MODEL]
        return config

    def keys(self) -> list[str]:
        # Custom keys that shadow built-ins are listed once
        return list(self._builtins) + [k for k in self._custom if k not in self._builtins]


@dataclass(frozen=True)
class ModelRequirements:
    """Constraints for picking a model for one pipeline stage."""

    language: str = "en"
    stage: Stage = "analysis"
    max_cost: float | None = None  # per 1k tokens
    min_quality: int = 7
    priority: Priority = "quality"


class ModelConfigManager:
    """Queries over a ModelRegistry: costs, comparisons, and recommendations."""

    def __init__(self, registry: ModelRegistry | None = None):
        self._registry = registry or ModelRegistry()

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def get_model_config(self, key: str) -> ModelTierConfig:
        return self._registry.get(key)

    def is_known(self, key: str) -> bool:
        return self._registry.lookup(key) is not None

    def register_model(self, key: str, config: ModelTierConfig) -> None:
        self._registry.register(key, config)

    def available_models(self) -> list[str]:
        return self._registry.keys()

    def models_by_provider(self, provider: str) -> list[str]:
        return [k for k in self.available_models() if self.get_model_config(k).provider == provider]

    def models_by_quality(self, min_quality: int) -> list[str]:
        return [k for k in self.available_models() if self.get_model_config(k).quality >= min_quality]

    def models_by_max_cost(self, max_cost: float) -> list[str]:
        return [
            k for k in self.available_models() if self.get_model_config(k).cost_per_1k_tokens <= max_cost
        ]

    def calculate_cost(self, key: str, input_tokens: int, output_tokens: int) -> float:
        """USD cost of a call: total tokens / 1000 * per-1k price."""
        config = self.get_model_config(key)
        return (input_tokens + output_tokens) / 1000 * config.cost_per_1k_tokens

    def calculate_cost_batch(self, usage: list[tuple[str, int, int]]) -> float:
        """Total cost of (model_key, input_tokens, output_tokens) entries."""
        return sum(self.calculate_cost(key, i, o) for key, i, o in usage)

    def get_best_value_model(self, min_quality: int = 7) -> str:
        """Model with the highest quality per dollar among those meeting min_quality."""
        candidates = self.models_by_quality(min_quality)
        if not candidates:
            return DEFAULT_MODEL

        def value(key: str) -> float:
            config = self.get_model_config(key)
            if config.cost_per_1k_tokens <= 0:
                return math.inf
            return config.quality / config.cost_per_1k_tokens

        return max(candidates, key=value)

    def get_fastest_model(self, min_quality: int = 6) -> str:
        candidates = self.models_by_quality(min_quality)
        if not candidates:
            return DEFAULT_MODEL
        return max(candidates, key=lambda k: self.get_model_config(k).speed)

    def compare_models(self, keys: list[str]) -> list[dict]:
        """Configs sorted by cost, with each model's cost as a multiple of the cheapest."""
        configs = [(k, self.get_model_config(k)) for k in keys]
        if not configs:
            return []
        min_cost = min(c.cost_per_1k_tokens for _, c in configs)
        rows = []
        for key, config in configs:
            if min_cost > 0:
                ratio = config.cost_per_1k_tokens / min_cost
            else:
                ratio = 1.0 if config.cost_per_1k_tokens == 0 else math.inf
            rows.append({"model": key, "config": config, "cost_ratio": ratio})
        rows.sort(key=lambda r: r["cost_ratio"])
        return rows

    def candidate_models(
        self, language: str, stage: Stage = "analysis", min_quality: int = 0
    ) -> list[str]:
        """Language shortlist narrowed by stage and quality, in shortlist order."""
        candidates = list(_SHORTLISTS[language_family(language)])
        if stage == "reflection":
            min_quality = max(min_quality, REFLECTION_MIN_QUALITY)
        return [k for k in candidates if self.get_model_config(k).quality >= min_quality]

    def get_model_recommendation(self, requirements: ModelRequirements | None = None) -> str:
        """Pick the best model key for a language, stage, and cost/quality constraints."""
        req = requirements or ModelRequirements()
        candidates = list(_SHORTLISTS[language_family(req.language)])

        if req.stage == "preliminary" and req.priority == "cost":
            viable = [
                k
                for k in candidates
                if req.max_cost is None or self.get_model_config(k).cost_per_1k_tokens <= req.max_cost
            ]
            if viable:
                return min(viable, key=lambda k: self.get_model_config(k).cost_per_1k_tokens)
            return DEFAULT_MODEL

        if req.stage == "reflection":
            candidates = [
                k for k in candidates if self.get_model_config(k).quality >= REFLECTION_MIN_QUALITY
            ]

        candidates = [k for k in candidates if self.get_model_config(k).quality >= req.min_quality]
        if req.max_cost is not None:
            candidates = [
                k for k in candidates if self.get_model_config(k).cost_per_1k_tokens <= req.max_cost
            ]

        # Stable sorts keep shortlist order among ties
        if req.priority == "cost":
            candidates.sort(key=lambda k: self.get_model_config(k).cost_per_1k_tokens)
        elif req.priority == "quality":
            candidates.sort(key=lambda k: -self.get_model_config(k).quality)
        elif req.priority == "speed":
            candidates.sort(key=lambda k: -self.get_model_config(k).speed)

        return candidates[0] if candidates else DEFAULT_MODEL


# Singleton instance
_manager: ModelConfigManager | None = None


def get_model_config_manager() -> ModelConfigManager:
    """Get or create the process-wide model config manager."""
    global _manager
    if _manager is None:
        _manager = ModelConfigManager(ModelRegistry())
    return _manager
