"""Score-dimension math shared by article analysis and personal scoring.

Scores live on a 1-10 scale and weights/importance on 0-1. Every function
here clamps its output to those ranges.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from article_lens.schemas import RecommendedAction, ScoreDimensions, SegmentAnalysis

SCORE_MIN = 1.0
SCORE_MAX = 10.0

NEUTRAL_SCORE = 5.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_score(value: float) -> float:
    return clamp(value, SCORE_MIN, SCORE_MAX)


def clamp_unit(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def round1(value: float) -> float:
    return round(value, 1)


def average_importance(analyses: Sequence[SegmentAnalysis]) -> float:
    if not analyses:
        return 0.5
    return sum(clamp_unit(a.importance) for a in analyses) / len(analyses)


def segment_score_dimensions(analyses: Sequence[SegmentAnalysis]) -> ScoreDimensions:
    """Heuristic content dimensions from per-segment analyses.

    Depth grows 1.5 points per segment carrying technical details, quality
    with the share of positive segments. Practicality and novelty blend the two.
    """
    if not analyses:
        return ScoreDimensions(
            depth=NEUTRAL_SCORE, quality=NEUTRAL_SCORE, practicality=NEUTRAL_SCORE, novelty=NEUTRAL_SCORE
        )

    technical = sum(1 for a in analyses if a.technical_details)
    positive = sum(1 for a in analyses if a.sentiment == "positive")
    avg_importance = average_importance(analyses)

    depth = clamp_score(5 + technical * 1.5)
    quality = clamp_score(5 + positive / len(analyses) * 5)
    return ScoreDimensions(
        depth=round1(depth),
        quality=round1(quality),
        practicality=round1(clamp_score(depth * 0.7 + quality * 0.3)),
        novelty=round1(clamp_score(quality * 0.5 + avg_importance * 10 * 0.5)),
    )


def ai_score(avg_importance: float) -> float:
    """Overall article score from mean segment importance."""
    return clamp_score(round1(clamp_unit(avg_importance) * 10))


@dataclass(frozen=True)
class RecommendationWeights:
    """Relative weight of each concern in a personalized overall score."""

    content_quality: float = 0.3
    personal_relevance: float = 0.4
    novelty: float = 0.2
    recency: float = 0.1


DEFAULT_WEIGHTS = RecommendationWeights()


def dimension_weights(weights: RecommendationWeights = DEFAULT_WEIGHTS) -> dict[str, float]:
    """Per-dimension weights derived from the concern weights.

    Depth carries the full content-quality weight and raw quality a
    fraction of it; practicality counts as half of personal relevance.
    Recency has no dimension of its own.
    """
    return {
        "depth": weights.content_quality,
        "quality": weights.content_quality * 0.3,
        "practicality": weights.personal_relevance * 0.5,
        "novelty": weights.novelty,
        "relevance": weights.personal_relevance,
    }


def weighted_overall(dimensions: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Weighted mean of the named dimensions, weights normalized to sum to 1.

    Dimensions missing from ``dimensions`` are skipped. The result is on
    the 1-10 scale, rounded to one decimal.
    """
    used = {name: w for name, w in weights.items() if name in dimensions and w > 0}
    total = sum(used.values())
    if total <= 0:
        return NEUTRAL_SCORE
    score = sum(clamp_score(dimensions[name]) * w / total for name, w in used.items())
    return round1(clamp_score(score))


def recommended_action(overall: float, relevance: float) -> RecommendedAction:
    if overall >= 8 and relevance >= 7:
        return "read_now"
    if overall >= 6:
        return "read_later"
    if overall >= 4:
        return "archive"
    return "skip"
