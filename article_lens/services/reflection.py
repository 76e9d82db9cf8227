"""Bounded critique-and-improve loop over article analyses."""

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from article_lens.config import DEFAULT_ANALYSIS_CONFIG, AnalysisConfig
from article_lens.schemas import (
    ArticleAnalysisResult,
    KeyQuote,
    ONE_LINE_MAX_CHARS,
    ONE_LINE_MIN_CHARS,
    MainPoint,
    ReflectionResult,
    ReflectionScores,
    ScoreDimensions,
)
from article_lens.services.llm import JsonCall, ModelClient, get_model_client
from article_lens.services.scoring_math import clamp, clamp_score, clamp_unit, round1
from article_lens.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

REFLECTION_PREVIEW_CHARS = 3000
IMPROVEMENT_PREVIEW_CHARS = 2000

# Used when the critique call fails: accept the analysis as is
FAIL_OPEN_QUALITY = 8.0

_RUBRIC = ("comprehensiveness", "accuracy", "depth", "consistency", "objectivity")


def _preview(content: str, limit: int) -> str:
    if len(content) > limit:
        return content[:limit] + "\n... [truncated]"
    return content


def _float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class ReflectionCall(JsonCall[ReflectionResult]):
    """Critique of an analysis against five fixed rubric dimensions."""

    service = "reflection"
    max_tokens = 800
    temperature = 0.2

    PROMPT = """You are a senior technical editor. Review the quality of this article analysis strictly.

[Article excerpt]
{content}

[Analysis]
- One-line summary: {one_line}
- Summary: {summary}
- Main points: {points}
- Tags: {tags}
- Category: {domain} / {subcategory}
- Score: {score}/10

[Review dimensions] (each scored 0-10)
1. comprehensiveness: are core arguments or key technical points missing?
2. accuracy: is the summary faithful to the article?
3. depth: does it capture the deeper insights rather than surface description?
4. consistency: are tags, category, and score logically consistent?
5. objectivity: is the score free of bias?

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"quality": 7.5, "scores": {{"comprehensiveness": 8, "accuracy": 9, "depth": 7, "consistency": 8, "objectivity": 7}}, "issues": ["<issue>"], "suggestions": ["<suggestion>"], "needsRefinement": true}}"""

    def __init__(self, content: str, analysis: ArticleAnalysisResult, quality_threshold: float):
        self.content = content
        self.analysis = analysis
        self.quality_threshold = quality_threshold

    def build_prompt(self) -> str:
        a = self.analysis
        return self.PROMPT.format(
            content=_preview(self.content, REFLECTION_PREVIEW_CHARS),
            one_line=a.one_line_summary,
            summary=a.summary,
            points="; ".join(p.point for p in a.main_points),
            tags=", ".join(a.tags),
            domain=a.domain,
            subcategory=a.subcategory,
            score=a.ai_score,
        )

    def parse(self, data: dict[str, Any]) -> ReflectionResult:
        quality = clamp(_float(data.get("quality"), 0.0), 0.0, 10.0)

        scores = None
        raw_scores = data.get("scores")
        if isinstance(raw_scores, dict):
            scores = ReflectionScores(
                **{k: clamp(_float(raw_scores.get(k), quality), 0.0, 10.0) for k in _RUBRIC}
            )

        needs_refinement = data.get("needsRefinement")
        if not isinstance(needs_refinement, bool):
            needs_refinement = quality < self.quality_threshold

        return ReflectionResult(
            quality=quality,
            issues=[str(i) for i in data.get("issues") or []],
            suggestions=[str(s) for s in data.get("suggestions") or []],
            needs_refinement=needs_refinement,
            scores=scores,
        )

    def fallback(self) -> ReflectionResult:
        return ReflectionResult(quality=FAIL_OPEN_QUALITY, needs_refinement=False)


class ImprovementCall(JsonCall[ArticleAnalysisResult]):
    """Replacement of an analysis's mutable fields guided by a critique."""

    service = "improvement"
    max_tokens = 2000

    PROMPT = """Improve this article analysis based on the review below.

[Article excerpt]
{content}

[Current analysis]
{analysis}

[Issues]
{issues}

[Suggestions]
{suggestions}

Respond with ONLY the complete improved analysis as a JSON object in this exact format (no markdown, no extra text):
{{"oneLineSummary": "<one sentence>", "summary": "<3-5 sentences>", "mainPoints": [{{"point": "<point>", "explanation": "<why it matters>", "importance": 0.8}}], "keyQuotes": [{{"quote": "<quote>", "significance": "<why>"}}], "tags": ["<tag>"], "domain": "<domain>", "subcategory": "<subcategory>", "aiScore": 8.5, "scoreDimensions": {{"depth": 8, "quality": 9, "practicality": 7, "novelty": 8}}}}"""

    def __init__(
        self,
        content: str,
        analysis: ArticleAnalysisResult,
        reflection: ReflectionResult,
        tag_cap: int = DEFAULT_ANALYSIS_CONFIG.tag_cap,
    ):
        self.content = content
        self.analysis = analysis
        self.reflection = reflection
        self.tag_cap = tag_cap

    def build_prompt(self) -> str:
        current = asdict(self.analysis)
        for key in ("analysis_model", "processing_time_ms", "reflection_rounds", "language"):
            current.pop(key, None)
        return self.PROMPT.format(
            content=_preview(self.content, IMPROVEMENT_PREVIEW_CHARS),
            analysis=json.dumps(current, ensure_ascii=False, indent=2),
            issues="\n".join(f"{i}. {s}" for i, s in enumerate(self.reflection.issues, 1)) or "-",
            suggestions="\n".join(f"{i}. {s}" for i, s in enumerate(self.reflection.suggestions, 1))
            or "-",
        )

    def parse(self, data: dict[str, Any]) -> ArticleAnalysisResult:
        a = self.analysis
        changes: dict[str, Any] = {}

        for key, attr in (
            ("oneLineSummary", "one_line_summary"),
            ("summary", "summary"),
            ("domain", "domain"),
            ("subcategory", "subcategory"),
        ):
            if data.get(key):
                changes[attr] = str(data[key])

        points = data.get("mainPoints")
        if isinstance(points, list) and points:
            changes["main_points"] = [
                MainPoint(
                    point=str(p.get("point", "")),
                    explanation=str(p.get("explanation", "")),
                    importance=clamp_unit(_float(p.get("importance"), 0.5)),
                )
                for p in points
                if isinstance(p, dict) and p.get("point")
            ] or a.main_points

        quotes = data.get("keyQuotes")
        if isinstance(quotes, list) and quotes:
            changes["key_quotes"] = [
                KeyQuote(quote=str(q.get("quote", "")), significance=str(q.get("significance", "")))
                for q in quotes
                if isinstance(q, dict) and q.get("quote")
            ] or a.key_quotes

        tags = data.get("tags")
        if isinstance(tags, list) and tags:
            unique = dict.fromkeys(str(t).strip() for t in tags if str(t).strip())
            changes["tags"] = list(unique)[: self.tag_cap] or a.tags

        if data.get("aiScore") is not None:
            changes["ai_score"] = round1(clamp_score(_float(data["aiScore"], a.ai_score)))

        dims = data.get("scoreDimensions")
        if isinstance(dims, dict):
            old = a.score_dimensions
            changes["score_dimensions"] = ScoreDimensions(
                **{
                    name: round1(clamp_score(_float(dims.get(name), getattr(old, name))))
                    for name in ("depth", "quality", "practicality", "novelty")
                }
            )

        return replace(a, **changes)

    def fallback(self) -> ArticleAnalysisResult:
        return self.analysis


@dataclass
class QuickCheckResult:
    passed: bool
    quality: float
    issues: list[str] = field(default_factory=list)


class ReflectionEngine:
    """Critiques an analysis and improves it until it is good enough or rounds run out.

    Rounds are strictly sequential; each critique sees the previous round's output.
    """

    def __init__(self, client: ModelClient | None = None, config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG):
        self._client = client or get_model_client()
        self.config = config

    async def refine(
        self,
        original_content: str,
        analysis: ArticleAnalysisResult,
        max_rounds: int | None = None,
        model_key: str | None = None,
        article_id: str | None = None,
    ) -> ArticleAnalysisResult:
        """Return the refined analysis with ``reflection_rounds`` set to the improve cycles run."""
        if max_rounds is None:
            max_rounds = self.config.max_reflection_rounds
        model_key = model_key or self.config.reflection_model
        threshold = self.config.quality_threshold

        current = analysis
        rounds = 0
        while rounds < max_rounds:
            with tracer.start_as_current_span("reflection_round", attributes={"round": rounds + 1}):
                reflection = await self._client.invoke(
                    ReflectionCall(original_content, current, threshold), model_key, article_id
                )
                if not reflection.needs_refinement or reflection.quality >= threshold:
                    logger.info("Reflection accepted analysis (quality %.1f)", reflection.quality)
                    break

                logger.info(
                    "Reflection round %d: quality %.1f, %d issues",
                    rounds + 1,
                    reflection.quality,
                    len(reflection.issues),
                )
                current = await self._client.invoke(
                    ImprovementCall(original_content, current, reflection, self.config.tag_cap),
                    model_key,
                    article_id,
                )
                rounds += 1

        return replace(current, reflection_rounds=rounds)

    def quick_check(self, analysis: ArticleAnalysisResult) -> QuickCheckResult:
        """Heuristic quality estimate with no model call."""
        score = 5.0
        issues: list[str] = []

        if ONE_LINE_MIN_CHARS <= len(analysis.one_line_summary) <= ONE_LINE_MAX_CHARS:
            score += 1
        else:
            issues.append(f"one-line summary length outside {ONE_LINE_MIN_CHARS}-{ONE_LINE_MAX_CHARS} characters")
        if len(analysis.summary) >= 50:
            score += 1
        else:
            issues.append("summary shorter than 50 characters")
        if len(analysis.main_points) >= 3:
            score += 1
        else:
            issues.append("fewer than 3 main points")
        if len(analysis.tags) >= 2:
            score += 0.5
        else:
            issues.append("fewer than 2 tags")
        if 4 <= analysis.ai_score <= 10:
            score += 0.5
        else:
            issues.append("score below 4")

        quality = min(10.0, score)
        return QuickCheckResult(passed=quality >= self.config.quality_threshold, quality=quality, issues=issues)
