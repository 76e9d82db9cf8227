"""Background worker that runs analysis jobs off the request path.

Usage:
    python -m article_lens.services.worker articles.jsonl [--refresh-preferences]
"""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from article_lens.errors import AnalysisUnavailableError
from article_lens.schemas import ArticleAnalysisResult, RawArticle
from article_lens.services.pipeline import ArticleAnalysisPipeline
from article_lens.services.preferences import PreferenceLearner, get_preference_learner

logger = logging.getLogger(__name__)

# A stuck job is abandoned after this long
JOB_TIMEOUT_SECONDS = 10 * 60

# Recompute preference profiles of active users every hour
PREFERENCE_REFRESH_SECONDS = 60 * 60


@dataclass
class JobOutcome:
    """Result of one analysis job, handed to the caller's ``on_result`` callback."""

    article: RawArticle
    result: ArticleAnalysisResult | None = None
    error: str | None = None
    unavailable: bool = False  # no model could run; retry later or skip


@dataclass
class WorkerStatus:
    """Tracks the state of the analysis worker."""

    is_running: bool = False
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_timed_out: int = 0
    last_job_at: datetime | None = None
    last_preference_refresh_at: datetime | None = None
    profiles_refreshed: int = 0
    last_error: str | None = None


ResultCallback = Callable[[JobOutcome], Awaitable[None] | None]


class AnalysisWorker:
    """Consumes queued articles with a fixed number of concurrent jobs.

    Also refreshes preference profiles of active users on an interval.
    """

    def __init__(
        self,
        pipeline: ArticleAnalysisPipeline | None = None,
        learner: PreferenceLearner | None = None,
        on_result: ResultCallback | None = None,
        concurrency: int = 1,
        job_timeout: float = JOB_TIMEOUT_SECONDS,
        preference_refresh_seconds: float | None = PREFERENCE_REFRESH_SECONDS,
    ):
        self._pipeline = pipeline or ArticleAnalysisPipeline()
        self._learner = learner
        self._on_result = on_result
        self._concurrency = max(1, concurrency)
        self.job_timeout = job_timeout
        self.preference_refresh_seconds = preference_refresh_seconds
        self._queue: asyncio.Queue[RawArticle] = asyncio.Queue()
        self._status = WorkerStatus()
        self._tasks: list[asyncio.Task] = []

    @property
    def status(self) -> WorkerStatus:
        """Get current worker status."""
        return self._status

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    async def submit(self, article: RawArticle) -> None:
        await self._queue.put(article)

    async def join(self) -> None:
        """Wait until every submitted article has been processed."""
        await self._queue.join()

    async def run_job(self, article: RawArticle) -> JobOutcome:
        """Analyze one article within the job timeout. Never raises except on cancellation."""
        try:
            result = await asyncio.wait_for(self._pipeline.analyze(article), timeout=self.job_timeout)
            self._status.jobs_completed += 1
            outcome = JobOutcome(article=article, result=result)
        except asyncio.TimeoutError:
            self._status.jobs_timed_out += 1
            self._status.last_error = f"Timed out after {self.job_timeout}s"
            logger.warning("Analysis of %r timed out after %ss", article.title, self.job_timeout)
            outcome = JobOutcome(article=article, error=self._status.last_error)
        except AnalysisUnavailableError as e:
            self._status.jobs_failed += 1
            self._status.last_error = str(e)
            logger.warning("Analysis of %r unavailable: %s", article.title, e)
            outcome = JobOutcome(article=article, error=str(e), unavailable=True)
        except Exception as e:
            self._status.jobs_failed += 1
            self._status.last_error = str(e)
            logger.exception("Analysis of %r failed: %s", article.title, e)
            outcome = JobOutcome(article=article, error=str(e))

        self._status.last_job_at = datetime.now()
        await self._deliver(outcome)
        return outcome

    async def _deliver(self, outcome: JobOutcome) -> None:
        if self._on_result is None:
            return
        try:
            ret = self._on_result(outcome)
            if inspect.isawaitable(ret):
                await ret
        except Exception:
            logger.exception("Result callback failed for %r", outcome.article.title)

    async def refresh_preferences(self) -> int:
        learner = self._learner or get_preference_learner()
        refreshed = await learner.refresh_active_users()
        self._status.profiles_refreshed += refreshed
        self._status.last_preference_refresh_at = datetime.now()
        return refreshed

    async def _job_loop(self) -> None:
        while True:
            article = await self._queue.get()
            try:
                await self.run_job(article)
            finally:
                self._queue.task_done()

    async def _preference_loop(self) -> None:
        """Periodically recompute preference profiles."""
        while True:
            try:
                await self.refresh_preferences()
            except Exception:
                logger.exception("Unexpected error in preference refresh loop")
            await asyncio.sleep(self.preference_refresh_seconds)

    def start(self) -> None:
        """Start the job loops and, if enabled, the preference refresh loop."""
        if self._status.is_running:
            return
        for _ in range(self._concurrency):
            self._tasks.append(asyncio.create_task(self._job_loop()))
        if self.preference_refresh_seconds:
            self._tasks.append(asyncio.create_task(self._preference_loop()))
            logger.info("Started preference refresh loop (interval=%ss)", self.preference_refresh_seconds)
        self._status.is_running = True
        logger.info("Started analysis worker with %d job loops", self._concurrency)

    async def stop(self) -> None:
        """Cancel all loops, including any in-flight job."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._status.is_running = False
        logger.info("Stopped analysis worker")


def _read_articles(path: str) -> list[RawArticle]:
    with open(path) as f:
        return [
            RawArticle(
                content=data.get("content", ""),
                title=data.get("title", ""),
                author=data.get("author"),
                article_id=data.get("id"),
            )
            for data in (json.loads(line) for line in f if line.strip())
        ]


async def run(path: str, refresh_preferences: bool) -> None:
    from article_lens.models.reading import init_db

    await init_db()

    async def print_outcome(outcome: JobOutcome) -> None:
        payload = {"title": outcome.article.title, "error": outcome.error}
        if outcome.result is not None:
            payload["analysis"] = outcome.result.to_dict()
        print(json.dumps(payload, ensure_ascii=False))

    worker = AnalysisWorker(on_result=print_outcome, preference_refresh_seconds=None)
    if refresh_preferences:
        refreshed = await worker.refresh_preferences()
        logger.info("Refreshed %d preference profiles", refreshed)

    worker.start()
    for article in _read_articles(path):
        await worker.submit(article)
    await worker.join()
    await worker.stop()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Analyze articles from a JSON-lines file.")
    parser.add_argument("path", help="JSON lines with title, content, and optional author/id")
    parser.add_argument(
        "--refresh-preferences",
        action="store_true",
        help="Recompute preference profiles of active users first",
    )
    parser.add_argument("--trace", action="store_true", help="Export spans over OTLP")
    args = parser.parse_args()

    if args.trace:
        from article_lens.tracing import setup_tracing

        setup_tracing()

    try:
        asyncio.run(run(args.path, args.refresh_preferences))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
