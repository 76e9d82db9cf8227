"""Personalized article scores from an analysis and a user's preference profile."""

import logging
from datetime import datetime, timedelta

from article_lens.schemas import (
    ArticleAnalysisResult,
    BoostFactors,
    PersonalDimensions,
    PersonalizedScore,
    PreferredDepth,
    UserPreferenceProfile,
)
from article_lens.services.scoring_math import (
    DEFAULT_WEIGHTS,
    NEUTRAL_SCORE,
    RecommendationWeights,
    clamp_score,
    clamp_unit,
    dimension_weights,
    recommended_action,
    round1,
    weighted_overall,
)

logger = logging.getLogger(__name__)

DEPTH_BOOST: dict[PreferredDepth, float] = {"deep": 1.3, "medium": 1.0, "light": 0.8}

EXCLUDED_RELEVANCE = 2.0
NO_PROFILE_CONFIDENCE = 0.7
PREFERRED_TOPIC_WEIGHT = 0.7
DOMAIN_MATCH_BONUS = 1.5
TOPIC_BOOST_SCALE = 3

FRESH_PROFILE_DAYS = 7
BROAD_PROFILE_TOPICS = 5


def topic_boost(tags: list[str], topic_weights: dict[str, float]) -> float:
    """Mean preference weight over the article tags the user has a weight for."""
    matched = [topic_weights[t.lower()] for t in tags if t.lower() in topic_weights]
    if not matched:
        return 0.0
    return clamp_unit(sum(matched) / len(matched))


def practicality_boost(completion_rate: float) -> float:
    if completion_rate > 0.7:
        return 1.2
    if completion_rate < 0.3:
        return 0.9
    return 1.0


def has_excluded_tag(tags: list[str], excluded_tags: list[str]) -> bool:
    return any(ex.lower() in tag.lower() for tag in tags for ex in excluded_tags if ex)


def relevance_score(analysis: ArticleAnalysisResult, profile: UserPreferenceProfile) -> float:
    """5 baseline, 2 on any excluded tag, raised by topic match and domain alignment."""
    if has_excluded_tag(analysis.tags, profile.excluded_tags):
        return EXCLUDED_RELEVANCE

    score = NEUTRAL_SCORE + topic_boost(analysis.tags, profile.topic_weights) * TOPIC_BOOST_SCALE
    preferred = [t for t, w in profile.topic_weights.items() if w > PREFERRED_TOPIC_WEIGHT]
    domain = analysis.domain.lower()
    if any(t.lower() in domain for t in preferred):
        score += DOMAIN_MATCH_BONUS
    return clamp_score(score)


def profile_confidence(profile: UserPreferenceProfile, now: datetime | None = None) -> float:
    now = now or datetime.now()
    confidence = 0.5
    if now - profile.updated_at < timedelta(days=FRESH_PROFILE_DAYS):
        confidence += 0.2
    if len(profile.topic_weights) > BROAD_PROFILE_TOPICS:
        confidence += 0.2
    return clamp_unit(confidence)


class PersonalScorer:
    """Scores analyses for one user. Pure computation; no model calls."""

    def __init__(self, weights: RecommendationWeights = DEFAULT_WEIGHTS):
        self.weights = weights
        self._dimension_weights = dimension_weights(weights)

    def calculate_score(
        self, analysis: ArticleAnalysisResult, profile: UserPreferenceProfile | None
    ) -> PersonalizedScore:
        if profile is None:
            return self._base_score(analysis)

        base = analysis.score_dimensions
        boost = topic_boost(analysis.tags, profile.topic_weights)
        factors = BoostFactors(
            depth_boost=DEPTH_BOOST.get(profile.preferred_depth, 1.0),
            practicality_boost=practicality_boost(profile.completion_rate),
            novelty_factor=1.0,
            relevance_score=relevance_score(analysis, profile),
            topic_boost=boost,
        )

        dimensions = PersonalDimensions(
            depth=round1(clamp_score(base.depth * factors.depth_boost)),
            quality=round1(clamp_score(base.quality)),
            practicality=round1(clamp_score(base.practicality * factors.practicality_boost)),
            novelty=round1(clamp_score(base.novelty * factors.novelty_factor)),
            relevance=round1(factors.relevance_score),
        )
        overall = weighted_overall(vars(dimensions), self._dimension_weights)

        return PersonalizedScore(
            overall=overall,
            dimensions=dimensions,
            reasons=self._reasons(analysis, dimensions, factors, profile),
            recommended_action=recommended_action(overall, dimensions.relevance),
            confidence=profile_confidence(profile),
            boost_factors=factors,
        )

    def calculate_scores_batch(
        self, analyses: list[ArticleAnalysisResult], profile: UserPreferenceProfile | None
    ) -> list[PersonalizedScore]:
        return [self.calculate_score(a, profile) for a in analyses]

    def _base_score(self, analysis: ArticleAnalysisResult) -> PersonalizedScore:
        base = analysis.score_dimensions
        dimensions = PersonalDimensions(
            depth=clamp_score(base.depth),
            quality=clamp_score(base.quality),
            practicality=clamp_score(base.practicality),
            novelty=clamp_score(base.novelty),
            relevance=NEUTRAL_SCORE,
        )
        overall = weighted_overall(vars(dimensions), self._dimension_weights)
        score = clamp_score(analysis.ai_score)
        return PersonalizedScore(
            overall=overall,
            dimensions=dimensions,
            reasons=[
                f"AI content score: {score}/10",
                "High-quality article" if score >= 7 else "Average content quality",
            ],
            recommended_action=recommended_action(overall, NEUTRAL_SCORE),
            confidence=NO_PROFILE_CONFIDENCE,
        )

    def _reasons(
        self,
        analysis: ArticleAnalysisResult,
        dimensions: PersonalDimensions,
        factors: BoostFactors,
        profile: UserPreferenceProfile,
    ) -> list[str]:
        reasons: list[str] = []

        if dimensions.relevance == EXCLUDED_RELEVANCE and has_excluded_tag(
            analysis.tags, profile.excluded_tags
        ):
            reasons.append("Tagged with a topic you usually skip")
        elif dimensions.relevance >= 8:
            reasons.append(f"Highly relevant to your interests (match {factors.topic_boost:.1f})")
        elif dimensions.relevance >= 6:
            reasons.append("Related to your interests")

        if dimensions.quality >= 8:
            reasons.append("Excellent content quality, worth a close read")
        elif dimensions.quality >= 6:
            reasons.append("Good content quality")

        if dimensions.depth >= 8:
            reasons.append("In-depth, matching your reading preference")
        if dimensions.practicality >= 7:
            reasons.append("Highly practical")
        if factors.novelty_factor < 0.8:
            reasons.append("Similar to what you read recently")

        if factors.topic_boost > 0.5:
            matched = [t for t in analysis.tags if t.lower() in profile.topic_weights]
            if matched:
                reasons.append("Covers topics you follow: " + ", ".join(matched[:2]))

        return reasons or ["Recommended by the system"]


# Singleton instance
_scorer: PersonalScorer | None = None


def get_personal_scorer() -> PersonalScorer:
    """Get or create the personal scorer singleton."""
    global _scorer
    if _scorer is None:
        _scorer = PersonalScorer()
    return _scorer
