"""End-to-end article analysis: language, model choice, map-reduce, reflection."""

import logging
import time

from article_lens.config import DEFAULT_ANALYSIS_CONFIG, AnalysisConfig
from article_lens.errors import AnalysisUnavailableError
from article_lens.schemas import ArticleAnalysisResult, RawArticle
from article_lens.services.language import LanguageDetector, get_language_detector
from article_lens.services.llm import ModelClient, get_model_client
from article_lens.services.model_registry import ModelRequirements, Stage
from article_lens.services.reflection import ReflectionEngine
from article_lens.services.segmented_analyzer import PointDeduplicator, SegmentedAnalyzer
from article_lens.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class ArticleAnalysisPipeline:
    """Produces the final ``ArticleAnalysisResult`` for one raw article.

    Meant to run from a background worker: it makes many model calls and
    can take minutes on long articles.
    """

    def __init__(
        self,
        client: ModelClient | None = None,
        config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
        detector: LanguageDetector | None = None,
        deduplicator: PointDeduplicator | None = None,
    ):
        self._client = client or get_model_client()
        self._manager = self._client.manager
        self._detector = detector or get_language_detector()
        self.config = config
        self.analyzer = SegmentedAnalyzer(self._client, config, deduplicator)
        self.reflection = ReflectionEngine(self._client, config)

    def candidates(self, language: str, stage: Stage) -> list[str]:
        """Model keys to try for a stage: the configured model, the recommendation, the shortlist."""
        configured = self.config.reflection_model if stage == "reflection" else self.config.analysis_model
        recommended = self._manager.get_model_recommendation(
            ModelRequirements(
                language=language,
                stage=stage,
                max_cost=self.config.max_cost_per_1k,
                min_quality=0,
                priority="quality" if stage == "reflection" else "cost",
            )
        )
        keys: list[str] = []
        for key in [configured, recommended, *self._manager.candidate_models(language, stage)]:
            if key in keys:
                continue
            cost = self._manager.get_model_config(key).cost_per_1k_tokens
            if self.config.max_cost_per_1k is not None and cost > self.config.max_cost_per_1k:
                continue
            keys.append(key)
        return keys

    def select_model(self, candidates: list[str]) -> str | None:
        """First candidate whose provider the client can reach."""
        for key in candidates:
            if self._client.supports(self._manager.get_model_config(key)):
                return key
        return None

    async def analyze(self, article: RawArticle) -> ArticleAnalysisResult:
        """Analyze an article.

        Raises:
            AnalysisUnavailableError: no candidate analysis model is usable.
                Every other failure degrades to fallback values.
        """
        start = time.monotonic()
        with tracer.start_as_current_span("analyze", attributes={"article.title": article.title}):
            if not article.content.strip():
                logger.info("Empty article %r, returning empty analysis", article.title)
                result = await self.analyzer.aggregate([], article.title, article.author)
                result.analysis_model = ""
                result.language = "other"
                return result

            detection = self._detector.detect(article.content)
            candidates = self.candidates(detection.language, "analysis")
            model_key = self.select_model(candidates)
            if model_key is None:
                raise AnalysisUnavailableError(candidates)

            logger.info(
                "Analyzing %r (language=%s, confidence=%.2f) with %s",
                article.title,
                detection.language,
                detection.confidence,
                model_key,
            )
            result = await self.analyzer.analyze(
                article.content, article.title, article.author, model_key, article.article_id
            )
            result.language = detection.language

            if self.config.enable_reflection and self.config.max_reflection_rounds > 0:
                result = await self._reflect(article, result, detection.language)

            result.processing_time_ms = int((time.monotonic() - start) * 1000)
            return result

    async def _reflect(
        self, article: RawArticle, result: ArticleAnalysisResult, language: str
    ) -> ArticleAnalysisResult:
        check = self.reflection.quick_check(result)
        if check.passed:
            logger.info("Quick check passed (quality %.1f), skipping reflection", check.quality)
            return result

        model_key = self.select_model(self.candidates(language, "reflection"))
        if model_key is None:
            logger.warning("No reflection model available, keeping unrefined analysis")
            return result

        logger.info("Quick check failed (%s), reflecting with %s", "; ".join(check.issues), model_key)
        return await self.reflection.refine(
            article.content, result, model_key=model_key, article_id=article.article_id
        )
