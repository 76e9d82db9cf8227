"""Tests for the shared score-dimension math."""

import pytest

from article_lens.services.scoring_math import (
    ai_score,
    clamp_score,
    clamp_unit,
    dimension_weights,
    recommended_action,
    segment_score_dimensions,
    weighted_overall,
)
from tests.factories import make_segment_analysis


class TestClamps:
    def test_clamp_score(self):
        assert clamp_score(0) == 1.0
        assert clamp_score(11) == 10.0
        assert clamp_score(5.5) == 5.5

    def test_clamp_unit(self):
        assert clamp_unit(-0.2) == 0.0
        assert clamp_unit(1.7) == 1.0


class TestSegmentDimensions:
    def test_no_analyses_are_neutral(self):
        dims = segment_score_dimensions([])
        assert (dims.depth, dims.quality, dims.practicality, dims.novelty) == (5.0, 5.0, 5.0, 5.0)

    def test_depth_rises_with_technical_segments(self):
        analyses = [
            make_segment_analysis(0, technical_details=["uses epoll"]),
            make_segment_analysis(1, technical_details=["work stealing"]),
            make_segment_analysis(2),
        ]
        dims = segment_score_dimensions(analyses)
        assert dims.depth == 8.0

    def test_depth_capped(self):
        analyses = [make_segment_analysis(i, technical_details=["x"]) for i in range(10)]
        assert segment_score_dimensions(analyses).depth == 10.0

    def test_quality_from_positive_share(self):
        analyses = [
            make_segment_analysis(0, sentiment="positive"),
            make_segment_analysis(1, sentiment="negative"),
        ]
        assert segment_score_dimensions(analyses).quality == 7.5

    def test_derived_dimensions(self):
        analyses = [make_segment_analysis(0, technical_details=["x"], sentiment="positive", importance=0.8)]
        dims = segment_score_dimensions(analyses)
        # depth 6.5, quality 10
        assert dims.practicality == pytest.approx(round(6.5 * 0.7 + 10 * 0.3, 1))
        assert dims.novelty == pytest.approx(round(10 * 0.5 + 8 * 0.5, 1))


class TestAiScore:
    def test_rounds_to_one_decimal(self):
        assert ai_score(0.734) == 7.3

    def test_never_below_one(self):
        assert ai_score(0.0) == 1.0


class TestWeightedOverall:
    def test_uniform_dimensions_return_that_value(self):
        dims = {"depth": 7, "quality": 7, "practicality": 7, "novelty": 7, "relevance": 7}
        assert weighted_overall(dims, dimension_weights()) == 7.0

    def test_weights_are_normalized(self):
        dims = {"depth": 10, "quality": 10, "practicality": 10, "novelty": 10, "relevance": 10}
        assert weighted_overall(dims, dimension_weights()) == 10.0

    def test_missing_dimensions_ignored(self):
        assert weighted_overall({"depth": 9}, dimension_weights()) == 9.0

    def test_no_weights_is_neutral(self):
        assert weighted_overall({"depth": 9}, {}) == 5.0

    def test_relevance_outweighs_quality(self):
        weights = dimension_weights()
        assert weights["relevance"] > weights["quality"]


class TestRecommendedAction:
    @pytest.mark.parametrize(
        "overall,relevance,action",
        [
            (8.0, 7.0, "read_now"),
            (8.5, 6.9, "read_later"),
            (6.0, 2.0, "read_later"),
            (4.0, 9.0, "archive"),
            (3.9, 9.0, "skip"),
        ],
    )
    def test_thresholds(self, overall, relevance, action):
        assert recommended_action(overall, relevance) == action
