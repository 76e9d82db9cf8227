"""Token and cost accounting for model calls.

Every completed call is written to ``api_usage_logs`` priced through the model
registry. Writes are retried briefly and then dropped with a warning; a lost
usage row never fails an analysis.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy import func, select

from article_lens.models.reading import ApiUsageLog, get_session_factory
from article_lens.services.model_registry import get_model_config_manager

logger = logging.getLogger(__name__)

WRITE_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.5


@dataclass
class UsageTotals:
    """Aggregated usage for one model or service."""

    key: str
    calls: int
    input_tokens: int
    output_tokens: int
    cost_usd: float


def compute_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """USD cost of a call; unknown model keys are priced as the default model."""
    return get_model_config_manager().calculate_cost(model, input_tokens, output_tokens)


async def log_usage(
    service: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    article_id: str | None = None,
) -> None:
    entry_values = {
        "service": service,
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cost_usd": compute_cost(model, input_tokens, output_tokens),
        "article_id": article_id,
    }

    last_error: Exception | None = None
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            factory = await get_session_factory()
            async with factory() as session:
                session.add(ApiUsageLog(timestamp=datetime.now(), **entry_values))
                await session.commit()
            return
        except Exception as exc:
            last_error = exc
            if attempt < WRITE_ATTEMPTS:
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    logger.warning(
        "Dropped %s usage row for %s after %d attempts: %s", service, model, WRITE_ATTEMPTS, last_error
    )


async def usage_breakdown(
    group_by: Literal["model", "service"] = "model",
    since: datetime | None = None,
) -> list[UsageTotals]:
    """Sum calls, tokens and cost per model (or per service), most expensive first."""
    column = ApiUsageLog.model if group_by == "model" else ApiUsageLog.service
    query = select(
        column,
        func.count(ApiUsageLog.id),
        func.coalesce(func.sum(ApiUsageLog.input_tokens), 0),
        func.coalesce(func.sum(ApiUsageLog.output_tokens), 0),
        func.coalesce(func.sum(ApiUsageLog.cost_usd), 0.0),
    ).group_by(column)
    if since is not None:
        query = query.where(ApiUsageLog.timestamp >= since)

    factory = await get_session_factory()
    async with factory() as session:
        rows = (await session.execute(query)).all()

    totals = [
        UsageTotals(key=row[0], calls=row[1], input_tokens=row[2], output_tokens=row[3], cost_usd=row[4])
        for row in rows
    ]
    totals.sort(key=lambda t: t.cost_usd, reverse=True)
    return totals
