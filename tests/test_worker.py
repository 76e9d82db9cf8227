"""Tests for the background analysis worker."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from article_lens.errors import AnalysisUnavailableError
from article_lens.schemas import RawArticle
from article_lens.services.worker import AnalysisWorker, JobOutcome, _read_articles
from tests.factories import make_analysis


def _article(title: str = "An article") -> RawArticle:
    return RawArticle(content="Some content.", title=title, article_id=title)


def _pipeline(side_effect=None) -> MagicMock:
    pipeline = MagicMock()
    pipeline.analyze = AsyncMock(return_value=make_analysis(), side_effect=side_effect)
    return pipeline


# ---------------------------------------------------------------------------
# 1. run_job
# ---------------------------------------------------------------------------


class TestRunJob:
    async def test_success(self):
        received: list[JobOutcome] = []
        worker = AnalysisWorker(pipeline=_pipeline(), on_result=received.append)

        outcome = await worker.run_job(_article())

        assert outcome.result is not None
        assert outcome.error is None
        assert received == [outcome]
        assert worker.status.jobs_completed == 1
        assert worker.status.last_job_at is not None

    async def test_async_callback(self):
        callback = AsyncMock()
        worker = AnalysisWorker(pipeline=_pipeline(), on_result=callback)
        outcome = await worker.run_job(_article())
        callback.assert_awaited_once_with(outcome)

    async def test_unavailable(self):
        worker = AnalysisWorker(pipeline=_pipeline(AnalysisUnavailableError(["gpt-4o"])))
        outcome = await worker.run_job(_article())

        assert outcome.unavailable
        assert "gpt-4o" in outcome.error
        assert worker.status.jobs_failed == 1

    async def test_timeout(self):
        async def slow(article):
            await asyncio.sleep(10)

        pipeline = MagicMock()
        pipeline.analyze = slow
        worker = AnalysisWorker(pipeline=pipeline, job_timeout=0.05)
        outcome = await worker.run_job(_article())

        assert outcome.result is None
        assert "Timed out" in outcome.error
        assert worker.status.jobs_timed_out == 1

    async def test_unexpected_error(self):
        worker = AnalysisWorker(pipeline=_pipeline(RuntimeError("boom")))
        outcome = await worker.run_job(_article())

        assert outcome.error == "boom"
        assert not outcome.unavailable
        assert worker.status.last_error == "boom"

    async def test_callback_failure_does_not_propagate(self):
        def broken(outcome):
            raise ValueError("sink down")

        worker = AnalysisWorker(pipeline=_pipeline(), on_result=broken)
        outcome = await worker.run_job(_article())
        assert outcome.result is not None


# ---------------------------------------------------------------------------
# 2. Loops
# ---------------------------------------------------------------------------


class TestLoops:
    async def test_processes_queue(self):
        received: list[JobOutcome] = []
        worker = AnalysisWorker(
            pipeline=_pipeline(), on_result=received.append, concurrency=2, preference_refresh_seconds=None
        )
        worker.start()
        assert worker.status.is_running

        for i in range(5):
            await worker.submit(_article(f"article-{i}"))
        await worker.join()
        await worker.stop()

        assert sorted(o.article.title for o in received) == [f"article-{i}" for i in range(5)]
        assert worker.status.jobs_completed == 5
        assert not worker.status.is_running
        assert worker.queued == 0

    async def test_start_is_idempotent(self):
        worker = AnalysisWorker(pipeline=_pipeline(), preference_refresh_seconds=None)
        worker.start()
        worker.start()
        assert len(worker._tasks) == 1
        await worker.stop()

    async def test_refresh_preferences(self):
        learner = MagicMock()
        learner.refresh_active_users = AsyncMock(return_value=3)
        worker = AnalysisWorker(pipeline=_pipeline(), learner=learner)

        assert await worker.refresh_preferences() == 3
        assert worker.status.profiles_refreshed == 3
        assert worker.status.last_preference_refresh_at is not None

    async def test_preference_loop_survives_errors(self):
        learner = MagicMock()
        learner.refresh_active_users = AsyncMock(side_effect=[RuntimeError("db locked"), 2, 2, 2, 2])
        worker = AnalysisWorker(pipeline=_pipeline(), learner=learner, preference_refresh_seconds=0.01)

        worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert learner.refresh_active_users.await_count >= 2
        assert worker.status.profiles_refreshed >= 2


def test_read_articles(tmp_path):
    path = tmp_path / "articles.jsonl"
    lines = [
        json.dumps({"id": "a1", "title": "First", "content": "Body", "author": "Ann"}),
        "",
        json.dumps({"title": "Second", "content": "More"}),
    ]
    path.write_text("\n".join(lines))

    articles = _read_articles(str(path))
    assert [a.title for a in articles] == ["First", "Second"]
    assert articles[0].article_id == "a1"
    assert articles[1].author is None
