"""Score candidate places on the eight preference metrics from their reviews."""
from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from routegen.errors import InferenceError
from routegen.llm import StructuredInferenceClient
from routegen.schemas import METRIC_ORDER, Candidate, CandidatePool, MetricVector

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ROUTEGEN_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

REVIEWS_PER_PLACE = 3
DEFAULT_CONCURRENCY = 5

METRICS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "metrics": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                name: {"type": "integer", "minimum": 1, "maximum": 10} for name in METRIC_ORDER
            },
            "required": list(METRIC_ORDER),
        }
    },
    "required": ["metrics"],
}

SCORING_SYSTEM = """You output ONLY JSON matching the schema.
Scoring rules (strict):
- Each metric is an INTEGER 1-10.
- Use 5 as neutral when truly unknown.
- Do not fall back to 5 for every unknown metric; nudge neutral guesses slightly up or down.
- Scores should look spread out. The same score must NOT be repeated many times.
- Do NOT score all metrics above 5 or all below 5. Roughly half should be above and half below.
- Evidence mapping:
  * strong positive -> 8-9; extreme -> 10
  * weak positive -> 6-7
  * weak negative -> 4-3; strong -> 2; extreme -> 1
- Use 1 or 10 ONLY with explicit and powerful wording.
- Phrase lexicon (examples):
  * cultural: history, heritage, museum, historic, old town, architecture
  * relaxation: quiet, peaceful, calm, tranquil, chill, crowded(-) noisy(-)
  * gastronomic: food, dining, dinner, cuisine, restaurant, delicious
  * nature: park, green, forest, sea, beach, mountain, outdoors
  * modern: modern, contemporary, trendy, sleek
  * entertaining: lively, fun, entertaining, nightlife, music
  * romantic: romantic, intimate, cozy, date
  * adventurous: hike, trail, adrenaline, adventure, climb
"""


def usable_reviews(candidate: Candidate) -> List[str]:
    reviews = [str(text).strip() for text in candidate.review_snippets[:REVIEWS_PER_PLACE]]
    return [text for text in reviews if text]


def build_prompt(reviews: List[str], prefix: Optional[str] = None) -> str:
    """Format up to three reviews under the scoring instruction."""
    lines = "\n".join(
        f"-- Review-{i}: {text}" for i, text in enumerate(reviews[:REVIEWS_PER_PLACE], 1)
    )
    head = f"{prefix.strip()}\n" if prefix and prefix.strip() else ""
    return (
        head
        + f"Score these 8 metrics ({', '.join(METRIC_ORDER)}) "
        "each as an INTEGER from 1 to 10 based ONLY on the reviews below. "
        "If a metric is not mentioned, infer fairly using the neutral default (5). "
        "Return scores only; do not include explanations.\n"
        + lines
    )


async def score_candidate(
    candidate: Candidate,
    inference: StructuredInferenceClient,
    prefix: Optional[str] = None,
) -> Optional[Candidate]:
    """Return a ranked copy of ``candidate`` or ``None`` when it cannot be scored."""
    reviews = usable_reviews(candidate)
    if not reviews:
        logger.info("No reviews for id=%s (%s); skipping", candidate.id, candidate.display_name)
        return None

    started = time.perf_counter()
    try:
        payload = await inference.invoke(
            SCORING_SYSTEM,
            build_prompt(reviews, prefix),
            METRICS_SCHEMA,
            name="emit_metrics",
            temperature=0.0,
            max_tokens=512,
        )
        metrics = MetricVector.model_validate(payload.get("metrics"))
    except (InferenceError, ValidationError):
        logger.warning("Scoring output unusable for id=%s", candidate.id, exc_info=True)
        return None
    except Exception:
        logger.warning("Scoring failed for id=%s", candidate.id, exc_info=True)
        return None

    logger.debug(
        "Scored id=%s (%s) in %.2fs", candidate.id, candidate.display_name, time.perf_counter() - started
    )
    return candidate.model_copy(update={"metric_vector": metrics, "on_route": False})


def _collect(pool: CandidatePool, results: Dict[str, Optional[Candidate]]) -> CandidatePool:
    # Keep input order regardless of completion order.
    ranked = CandidatePool()
    for candidate_id in pool.ids():
        scored = results.get(candidate_id)
        if scored is not None:
            ranked.add(scored)
    return ranked


class CandidateRanker(Protocol):
    async def rank(self, pool: CandidatePool, prefix: Optional[str] = None) -> CandidatePool:
        ...


class ConcurrentRanker:
    """Fan out scoring calls with at most ``limit`` in flight."""

    def __init__(self, inference: StructuredInferenceClient, limit: int = DEFAULT_CONCURRENCY) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.inference = inference
        self.limit = limit

    async def rank(self, pool: CandidatePool, prefix: Optional[str] = None) -> CandidatePool:
        if len(pool) == 0:
            logger.warning("rank: no candidates supplied")
            return CandidatePool()

        logger.info("Ranking %d candidates, concurrency=%d", len(pool), self.limit)
        semaphore = asyncio.Semaphore(self.limit)
        results: Dict[str, Optional[Candidate]] = {}

        async def _run(candidate: Candidate) -> None:
            async with semaphore:
                results[candidate.id] = await score_candidate(candidate, self.inference, prefix)

        await asyncio.gather(*[_run(candidate) for candidate in pool.values()])
        ranked = _collect(pool, results)
        logger.info("Ranking complete: %d/%d candidates scored", len(ranked), len(pool))
        return ranked


class SerialJitterRanker:
    """Score candidates one at a time with a short random pause between calls."""

    def __init__(
        self,
        inference: StructuredInferenceClient,
        min_delay: float = 0.05,
        max_delay: float = 0.25,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.inference = inference
        self.min_delay = min_delay
        self.max_delay = max(min_delay, max_delay)
        self._sleep = sleep

    async def rank(self, pool: CandidatePool, prefix: Optional[str] = None) -> CandidatePool:
        if len(pool) == 0:
            logger.warning("rank: no candidates supplied")
            return CandidatePool()

        logger.info("Ranking %d candidates serially", len(pool))
        results: Dict[str, Optional[Candidate]] = {}
        called = False
        for candidate in pool.values():
            if not usable_reviews(candidate):
                results[candidate.id] = None
                logger.info("No reviews for id=%s (%s); skipping", candidate.id, candidate.display_name)
                continue
            if called:
                await self._sleep(random.uniform(self.min_delay, self.max_delay))
            results[candidate.id] = await score_candidate(candidate, self.inference, prefix)
            called = True
        ranked = _collect(pool, results)
        logger.info("Ranking complete: %d/%d candidates scored", len(ranked), len(pool))
        return ranked


def build_ranker(
    strategy: str,
    inference: StructuredInferenceClient,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    min_delay: float = 0.05,
    max_delay: float = 0.25,
) -> CandidateRanker:
    if strategy == "concurrent":
        return ConcurrentRanker(inference, limit=concurrency)
    if strategy == "serial":
        return SerialJitterRanker(inference, min_delay=min_delay, max_delay=max_delay)
    raise ValueError(f"Unknown ranking strategy: {strategy!r}")
