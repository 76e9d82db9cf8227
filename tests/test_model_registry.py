"""Tests for the model registry and model selection."""

import math

import pytest

from article_lens.services.model_registry import (
    BUILTIN_MODELS,
    DEFAULT_MODEL,
    ModelConfigManager,
    ModelRegistry,
    ModelRequirements,
    ModelTierConfig,
    get_model_config_manager,
    language_family,
)


@pytest.fixture
def manager() -> ModelConfigManager:
    return ModelConfigManager(ModelRegistry())


# ---------------------------------------------------------------------------
# 1. Registry
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_builtin_lookup(self):
        registry = ModelRegistry()
        assert registry.get("claude-3-5-sonnet").model == "claude-3-5-sonnet-20241022"

    def test_unknown_key_falls_back_to_default(self):
        registry = ModelRegistry()
        assert registry.get("no-such-model") == BUILTIN_MODELS[DEFAULT_MODEL]
        assert registry.lookup("no-such-model") is None

    def test_custom_entry_shadows_builtin(self):
        registry = ModelRegistry()
        custom = ModelTierConfig("custom", "my-gpt-4o", 8000, 0.001, 9, 9)
        registry.register("gpt-4o", custom)
        assert registry.get("gpt-4o") is custom
        assert registry.keys().count("gpt-4o") == 1

    def test_custom_entry_listed(self):
        registry = ModelRegistry()
        registry.register("house-model", ModelTierConfig("custom", "house", 4096, 0.0001, 7, 7))
        assert "house-model" in registry.keys()

    def test_registries_are_independent(self):
        a, b = ModelRegistry(), ModelRegistry()
        a.register("only-in-a", ModelTierConfig("custom", "x", 1, 0.1, 5, 5))
        assert b.lookup("only-in-a") is None


# ---------------------------------------------------------------------------
# 2. Cost and comparisons
# ---------------------------------------------------------------------------


class TestCosts:
    def test_calculate_cost(self, manager):
        # (1500 + 500) / 1000 * 0.005
        assert manager.calculate_cost("gpt-4o", 1500, 500) == pytest.approx(0.01)

    def test_calculate_cost_unknown_model_uses_default_price(self, manager):
        assert manager.calculate_cost("mystery", 1000, 0) == pytest.approx(0.00015)

    def test_calculate_cost_batch(self, manager):
        total = manager.calculate_cost_batch([("gpt-4o", 1000, 0), ("deepseek-chat", 500, 500)])
        assert total == pytest.approx(0.005 + 0.00014)

    def test_best_value_prefers_free_models(self, manager):
        # llama3 and mistral are free but below quality 7
        assert manager.get_best_value_model(min_quality=7) == "gemini-1.5-flash"
        assert manager.get_best_value_model(min_quality=6) in ("llama3", "mistral")

    def test_best_value_with_impossible_floor(self, manager):
        assert manager.get_best_value_model(min_quality=11) == DEFAULT_MODEL

    def test_fastest_model(self, manager):
        assert manager.get_fastest_model(min_quality=6) in ("claude-3-haiku", "gemini-1.5-flash")

    def test_compare_models_sorted_by_cost(self, manager):
        rows = manager.compare_models(["gpt-4o", "deepseek-chat", "gpt-4o-mini"])
        assert [r["model"] for r in rows] == ["deepseek-chat", "gpt-4o-mini", "gpt-4o"]
        assert rows[0]["cost_ratio"] == pytest.approx(1.0)
        assert rows[2]["cost_ratio"] == pytest.approx(0.005 / 0.00014)

    def test_compare_models_with_free_model(self, manager):
        rows = manager.compare_models(["llama3", "gpt-4o"])
        assert rows[0]["cost_ratio"] == 1.0
        assert math.isinf(rows[1]["cost_ratio"])

    def test_filters(self, manager):
        assert set(manager.models_by_provider("ollama")) == {"llama3", "mistral"}
        assert all(manager.get_model_config(k).quality >= 9 for k in manager.models_by_quality(9))
        assert "claude-3-opus" not in manager.models_by_max_cost(0.01)


# ---------------------------------------------------------------------------
# 3. Recommendation
# ---------------------------------------------------------------------------


class TestRecommendation:
    @pytest.mark.parametrize(
        "language,family",
        [("zh", "chinese"), ("zh-TW", "chinese"), ("en", "western"), ("fr", "western"), ("ja", "other")],
    )
    def test_language_family(self, language, family):
        assert language_family(language) == family

    def test_zh_reflection_meets_quality_floor(self, manager):
        key = manager.get_model_recommendation(
            ModelRequirements(language="zh", stage="reflection", min_quality=8)
        )
        assert manager.get_model_config(key).quality >= 8
        assert key in ("deepseek-chat", "deepseek-coder")

    def test_reflection_candidates_all_high_quality(self, manager):
        for language in ("zh", "en", "ko"):
            for key in manager.candidate_models(language, "reflection"):
                assert manager.get_model_config(key).quality >= 8

    def test_preliminary_cost_picks_cheapest(self, manager):
        key = manager.get_model_recommendation(
            ModelRequirements(language="en", stage="preliminary", priority="cost")
        )
        assert key == "gemini-1.5-flash"

    def test_quality_priority(self, manager):
        key = manager.get_model_recommendation(ModelRequirements(language="en", priority="quality"))
        assert manager.get_model_config(key).quality == 9

    def test_speed_priority(self, manager):
        key = manager.get_model_recommendation(ModelRequirements(language="en", priority="speed"))
        assert key == "gemini-1.5-flash"

    def test_max_cost_filter(self, manager):
        key = manager.get_model_recommendation(
            ModelRequirements(language="en", max_cost=0.001, priority="quality")
        )
        assert manager.get_model_config(key).cost_per_1k_tokens <= 0.001

    def test_empty_shortlist_returns_default(self, manager):
        key = manager.get_model_recommendation(
            ModelRequirements(language="ja", stage="reflection", min_quality=10)
        )
        assert key == DEFAULT_MODEL

    def test_singleton(self):
        assert get_model_config_manager() is get_model_config_manager()
