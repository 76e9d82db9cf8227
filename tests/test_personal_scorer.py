"""Tests for personalized scoring."""

from datetime import datetime, timedelta

import pytest

from article_lens.schemas import ScoreDimensions
from article_lens.services.personal_scorer import (
    PersonalScorer,
    get_personal_scorer,
    has_excluded_tag,
    practicality_boost,
    profile_confidence,
    relevance_score,
    topic_boost,
)
from article_lens.services.scoring_math import RecommendationWeights
from tests.factories import make_analysis, make_profile


@pytest.fixture
def scorer() -> PersonalScorer:
    return PersonalScorer()


# ---------------------------------------------------------------------------
# 1. Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_topic_boost_averages_matched_tags(self):
        assert topic_boost(["Rust", "async", "unknown"], {"rust": 0.9, "async": 0.6}) == pytest.approx(0.75)

    def test_topic_boost_no_match(self):
        assert topic_boost(["go"], {"rust": 0.9}) == 0.0

    @pytest.mark.parametrize("rate,boost", [(0.9, 1.2), (0.5, 1.0), (0.1, 0.9)])
    def test_practicality_boost(self, rate, boost):
        assert practicality_boost(rate) == boost

    def test_excluded_tag_substring_match(self):
        assert has_excluded_tag(["Crypto-Trading"], ["crypto"])
        assert not has_excluded_tag(["rust"], ["crypto"])
        assert not has_excluded_tag(["rust"], [""])

    def test_relevance_excluded(self):
        analysis = make_analysis(tags=["crypto", "defi"])
        assert relevance_score(analysis, make_profile(excluded_tags=["crypto"])) == 2.0

    def test_relevance_topic_match(self):
        assert relevance_score(make_analysis(), make_profile()) == pytest.approx(7.25)

    def test_relevance_domain_match(self):
        profile = make_profile(topic_weights={"technology": 0.9})
        assert relevance_score(make_analysis(tags=["go"]), profile) == pytest.approx(6.5)

    def test_confidence(self):
        now = datetime.now()
        broad = make_profile(topic_weights={f"t{i}": 0.5 for i in range(6)}, updated_at=now)
        stale = make_profile(updated_at=now - timedelta(days=30))
        assert profile_confidence(broad, now) == pytest.approx(0.9)
        assert profile_confidence(stale, now) == pytest.approx(0.5)
        assert profile_confidence(make_profile(updated_at=now), now) == pytest.approx(0.7)


# ---------------------------------------------------------------------------
# 2. calculate_score
# ---------------------------------------------------------------------------


class TestCalculateScore:
    def test_excluded_tag_caps_relevance(self, scorer):
        analysis = make_analysis(tags=["crypto", "defi"])
        score = scorer.calculate_score(analysis, make_profile(excluded_tags=["crypto"]))

        assert score.dimensions.relevance == 2.0
        assert "Tagged with a topic you usually skip" in score.reasons

    def test_no_profile_uses_base_score(self, scorer):
        score = scorer.calculate_score(make_analysis(ai_score=7.0), None)

        assert score.dimensions.relevance == 5.0
        assert score.confidence == 0.7
        assert score.boost_factors is None
        assert score.reasons[0] == "AI content score: 7.0/10"
        assert score.reasons[1] == "High-quality article"

    def test_no_profile_average_article(self, scorer):
        score = scorer.calculate_score(make_analysis(ai_score=5.0), None)
        assert score.reasons[1] == "Average content quality"

    @pytest.mark.parametrize("depth_pref,expected", [("deep", 9.1), ("medium", 7.0), ("light", 5.6)])
    def test_depth_preference(self, scorer, depth_pref, expected):
        score = scorer.calculate_score(make_analysis(), make_profile(preferred_depth=depth_pref))
        assert score.dimensions.depth == pytest.approx(expected)

    def test_depth_boost_clamped(self, scorer):
        analysis = make_analysis(score_dimensions=ScoreDimensions(depth=9.5, quality=6, practicality=6, novelty=6))
        score = scorer.calculate_score(analysis, make_profile(preferred_depth="deep"))
        assert score.dimensions.depth == 10.0

    @pytest.mark.parametrize("rate,expected", [(0.8, 8.0), (0.5, 6.7), (0.1, 6.0)])
    def test_practicality_follows_completion_rate(self, scorer, rate, expected):
        score = scorer.calculate_score(make_analysis(), make_profile(completion_rate=rate))
        assert score.dimensions.practicality == pytest.approx(expected)

    def test_boost_factors_reported(self, scorer):
        score = scorer.calculate_score(make_analysis(), make_profile(preferred_depth="deep"))
        factors = score.boost_factors
        assert factors.depth_boost == 1.3
        assert factors.topic_boost == pytest.approx(0.75)
        assert factors.novelty_factor == 1.0

    def test_uniform_dimensions(self, scorer):
        analysis = make_analysis(
            tags=[], score_dimensions=ScoreDimensions(depth=7, quality=7, practicality=7, novelty=7)
        )
        profile = make_profile(topic_weights={}, completion_rate=0.5)
        score = scorer.calculate_score(analysis, profile)
        # Relevance sits at the neutral 5, pulling the overall below 7
        assert 5.0 < score.overall < 7.0
        assert score.recommended_action == "read_later"

    def test_strong_match_reads_now(self, scorer):
        analysis = make_analysis(
            score_dimensions=ScoreDimensions(depth=9, quality=9, practicality=9, novelty=9)
        )
        profile = make_profile(topic_weights={"rust": 1.0, "async": 1.0, "technology": 1.0}, completion_rate=0.9)
        score = scorer.calculate_score(analysis, profile)

        assert score.dimensions.relevance == 9.5
        assert score.recommended_action == "read_now"
        assert any(r.startswith("Covers topics you follow: rust, async") for r in score.reasons)

    def test_reasons_never_empty(self, scorer):
        analysis = make_analysis(
            tags=[], score_dimensions=ScoreDimensions(depth=3, quality=3, practicality=3, novelty=3)
        )
        score = scorer.calculate_score(analysis, make_profile(topic_weights={}))
        assert score.reasons == ["Recommended by the system"]
        assert score.recommended_action in ("archive", "skip")

    def test_custom_weights_change_overall(self):
        analysis = make_analysis(tags=["crypto"])
        profile = make_profile(excluded_tags=["crypto"])
        relevance_heavy = PersonalScorer(RecommendationWeights(content_quality=0.1, personal_relevance=0.9))
        quality_heavy = PersonalScorer(RecommendationWeights(content_quality=0.9, personal_relevance=0.1))

        assert (
            relevance_heavy.calculate_score(analysis, profile).overall
            < quality_heavy.calculate_score(analysis, profile).overall
        )

    def test_batch(self, scorer):
        analyses = [make_analysis(), make_analysis(tags=["crypto"])]
        scores = scorer.calculate_scores_batch(analyses, make_profile(excluded_tags=["crypto"]))
        assert len(scores) == 2
        assert scores[1].dimensions.relevance == 2.0
        assert scores[0].dimensions.relevance > 2.0


def test_singleton():
    assert get_personal_scorer() is get_personal_scorer()
