"""Map-reduce analysis of long articles.

Articles are split into overlapping segments (see ``segmentation``), each
segment is analyzed by one model call on a bounded pool, and the per-segment
results are merged into one ``ArticleAnalysisResult``.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from article_lens.config import DEFAULT_ANALYSIS_CONFIG, AnalysisConfig, get_settings
from article_lens.schemas import (
    ONE_LINE_MAX_CHARS,
    SENTIMENTS,
    ArticleAnalysisResult,
    MainPoint,
    Segment,
    SegmentAnalysis,
)
from article_lens.services.llm import JsonCall, ModelClient, get_model_client
from article_lens.services.scoring_math import (
    ai_score,
    average_importance,
    clamp_unit,
    segment_score_dimensions,
)
from article_lens.services.segmentation import lex_blocks, segment_blocks
from article_lens.tracing import get_tracer

if TYPE_CHECKING:
    from article_lens.services.embedder import TextEmbedder

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

DEFAULT_DOMAIN = "Technology"

# (subcategory, entity keywords), first match wins
CATEGORY_RULES: list[tuple[str, re.Pattern[str]]] = [
    (
        "AI/Machine Learning",
        re.compile(r"\b(ai|machine learning|deep learning|llms?|neural networks?|gpt|transformers?)\b"),
    ),
    (
        "Programming Languages",
        re.compile(r"\b(rust|javascript|typescript|python|golang|java|kotlin|c\+\+)(?!\w)"),
    ),
]
DEFAULT_SUBCATEGORY = "General"


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


class SegmentAnalysisCall(JsonCall[SegmentAnalysis]):
    """Key points, technical details, sentiment, importance, and entities of one segment."""

    service = "segment"
    max_tokens = 800

    PROMPT = """Analyze the following article segment (type: {segment_type}).

{content}

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"keyPoints": ["<point 1>", "<point 2>"], "technicalDetails": ["<detail>"], "sentiment": "positive|neutral|negative", "importance": 0.8, "entities": ["<entity 1>", "<entity 2>"]}}

Requirements:
- keyPoints: 2-5 key points from this segment
- technicalDetails: technical specifics (APIs, algorithms, code behaviour); empty list if none
- sentiment: the segment's overall tone
- importance: 0-1, how much this segment matters to the whole article
- entities: technologies, products, people, or organizations mentioned"""

    def __init__(self, segment: Segment):
        self.segment = segment

    def build_prompt(self) -> str:
        return self.PROMPT.format(
            segment_type=self.segment.type,
            content=self.segment.content,
        )

    def parse(self, data: dict[str, Any]) -> SegmentAnalysis:
        sentiment = data.get("sentiment")
        if sentiment not in SENTIMENTS:
            sentiment = "neutral"
        try:
            importance = clamp_unit(float(data.get("importance", 0.5)))
        except (TypeError, ValueError):
            importance = 0.5
        return SegmentAnalysis(
            segment_id=self.segment.id,
            key_points=_string_list(data.get("keyPoints")),
            technical_details=_string_list(data.get("technicalDetails")) or None,
            sentiment=sentiment,
            importance=importance,
            entities=_string_list(data.get("entities")) or None,
        )

    def fallback(self) -> SegmentAnalysis:
        return SegmentAnalysis(segment_id=self.segment.id, key_points=[], sentiment="neutral", importance=0.5)


@dataclass
class ArticleSummary:
    one_line: str
    full: str


class SummaryCall(JsonCall[ArticleSummary]):
    """One-line and full summary from the key points of the top segments."""

    service = "summary"
    max_tokens = 600

    PROMPT = """Write a summary of an article from the key points of its most important segments.

Article Title: {title}
Author: {author}

Key points:
{points}

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"oneLine": "<one-sentence summary, at most {max_chars} characters>", "full": "<3-5 sentence summary>"}}"""

    def __init__(self, title: str, author: str | None, points: list[str]):
        self.title = title
        self.author = author
        self.points = points

    def build_prompt(self) -> str:
        return self.PROMPT.format(
            title=self.title,
            author=self.author or "Unknown",
            max_chars=ONE_LINE_MAX_CHARS,
            points="\n".join(f"{i}. {p}" for i, p in enumerate(self.points, 1)),
        )

    def parse(self, data: dict[str, Any]) -> ArticleSummary:
        return ArticleSummary(
            one_line=str(data.get("oneLine") or self.title),
            full=str(data.get("full") or ""),
        )

    def fallback(self) -> ArticleSummary:
        return ArticleSummary(one_line=self.title, full=" ".join(self.points))


# ---------------------------------------------------------------------------
# Key-point deduplication
# ---------------------------------------------------------------------------


class PointDeduplicator(Protocol):
    async def deduplicate(self, points: list[str]) -> list[str]: ...


class NoopDeduplicator:
    """Keeps every point."""

    async def deduplicate(self, points: list[str]) -> list[str]:
        return list(points)


class EmbeddingDeduplicator:
    """Drops points whose embedding is too close to an earlier, kept point.

    Points are expected most-important first, so the kept representative of
    each cluster is the most important one.
    """

    def __init__(
        self,
        embedder: "TextEmbedder | None" = None,
        threshold: float = 0.9,
        model_name: str = DEFAULT_ANALYSIS_CONFIG.embedding_model,
    ):
        if embedder is None:
            # sentence-transformers pulls in torch; only load it when deduplicating
            from article_lens.services.embedder import TextEmbedder

            embedder = TextEmbedder(model_name=model_name)
        self._embedder = embedder
        self.threshold = threshold

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "EmbeddingDeduplicator":
        return cls(model_name=config.embedding_model)

    async def deduplicate(self, points: list[str]) -> list[str]:
        if len(points) < 2:
            return list(points)
        try:
            matrix = await self._embedder.embed_many(points)
        except Exception as e:
            logger.warning("Embedding deduplication failed, keeping all points: %s", e)
            return list(points)

        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        unit = matrix / np.where(norms == 0, 1, norms)
        kept: list[int] = []
        for i in range(len(points)):
            if not kept or float(np.max(unit[kept] @ unit[i])) < self.threshold:
                kept.append(i)
        return [points[i] for i in kept]


def categorize(entities: list[str]) -> tuple[str, str]:
    """Domain and subcategory from keyword matches over entity names."""
    haystack = " ".join(entities).lower()
    for subcategory, pattern in CATEGORY_RULES:
        if pattern.search(haystack):
            return DEFAULT_DOMAIN, subcategory
    return DEFAULT_DOMAIN, DEFAULT_SUBCATEGORY


class SegmentedAnalyzer:
    """Segments an article, analyzes the segments concurrently, and merges the results."""

    def __init__(
        self,
        client: ModelClient | None = None,
        config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
        deduplicator: PointDeduplicator | None = None,
        concurrency: int | None = None,
    ):
        self._client = client or get_model_client()
        self.config = config
        if deduplicator is None:
            deduplicator = (
                EmbeddingDeduplicator.from_config(config) if config.deduplicate_points else NoopDeduplicator()
            )
        self._deduplicator = deduplicator
        self._concurrency = concurrency or get_settings().analysis_concurrency

    def segment(self, content: str) -> list[Segment]:
        return segment_blocks(lex_blocks(content), self.config.segment_size)

    async def analyze(
        self,
        content: str,
        title: str,
        author: str | None = None,
        model_key: str | None = None,
        article_id: str | None = None,
    ) -> ArticleAnalysisResult:
        """Segment, analyze each segment, then aggregate into one article result."""
        start = time.monotonic()
        model_key = model_key or self.config.analysis_model

        segments = self.segment(content)
        logger.info("Analyzing %r in %d segments with %s", title, len(segments), model_key)

        analyses = await self.analyze_segments(segments, model_key, article_id)
        result = await self.aggregate(analyses, title, author, model_key, article_id)
        result.analysis_model = model_key
        result.processing_time_ms = int((time.monotonic() - start) * 1000)
        result.reflection_rounds = 0
        return result

    async def analyze_segments(
        self, segments: list[Segment], model_key: str, article_id: str | None = None
    ) -> list[SegmentAnalysis]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(segment: Segment) -> SegmentAnalysis:
            async with semaphore:
                with tracer.start_as_current_span(
                    "segment", attributes={"segment.id": segment.id, "segment.type": segment.type}
                ):
                    return await self._client.invoke(SegmentAnalysisCall(segment), model_key, article_id)

        return list(await asyncio.gather(*(run(s) for s in segments)))

    async def aggregate(
        self,
        analyses: list[SegmentAnalysis],
        title: str,
        author: str | None = None,
        model_key: str | None = None,
        article_id: str | None = None,
    ) -> ArticleAnalysisResult:
        """Merge segment analyses; independent of the order they arrive in."""
        model_key = model_key or self.config.analysis_model
        ordered = sorted(analyses, key=lambda a: (-a.importance, a.segment_id))

        # Each point keeps the importance of the segment it came from
        importance_of: dict[str, float] = {}
        for analysis in ordered:
            for point in analysis.key_points:
                importance_of.setdefault(point, analysis.importance)
        points = await self._deduplicator.deduplicate(list(importance_of))

        top_points = [p for a in ordered[: self.config.summary_top_n] for p in a.key_points]
        if top_points:
            summary = await self._client.invoke(
                SummaryCall(title, author, top_points), model_key, article_id
            )
        else:
            summary = ArticleSummary(one_line=title, full="")

        entities: list[str] = []
        for analysis in ordered:
            for entity in analysis.entities or []:
                if entity not in entities:
                    entities.append(entity)
        domain, subcategory = categorize(entities)

        return ArticleAnalysisResult(
            one_line_summary=summary.one_line,
            summary=summary.full,
            main_points=[
                MainPoint(point=p, explanation="", importance=importance_of.get(p, 0.5)) for p in points
            ],
            domain=domain,
            subcategory=subcategory,
            tags=entities[: self.config.tag_cap],
            ai_score=ai_score(average_importance(ordered)),
            score_dimensions=segment_score_dimensions(ordered),
            analysis_model=model_key,
        )
