"""
Base metric extractor — one MetricSet from a document's full text.

    text
      → cache lookup (sha256 of the text)
      → segments: the normalized pages, grouped up to the segment size (or
        logical pages found in the text when no pages are given)
      → per segment, first success of: primary model JSON → secondary model
        JSON → pattern extractor (all-null MetricSet if every tier fails)
      → merge segments: first non-null wins, disagreements lower confidence
      → whole-document pattern backfill when < 2 key metrics were found
      → cache store
"""

import logging
import math
from typing import Optional, Sequence

from valuation import config
from valuation.cache import BoundedCache, content_hash
from valuation.concurrency import run_in_waves
from valuation.errors import AllStrategiesFailed, ExtractionFailure, SchemaViolation
from valuation.extraction.json_repair import parse_json_object
from valuation.extraction.patterns import extract_with_patterns
from valuation.extraction.prompts import EXTRACTION_SYSTEM_PROMPT, segment_prompt
from valuation.extraction.schema import (
    count_filled,
    count_key_metrics,
    fill_nulls,
    get_leaf,
    leaf_paths,
    path_key,
    set_leaf,
)
from valuation.fallback import Strategy, first_success
from valuation.ingest.pages import group_pages, split_into_pages
from valuation.llm.client import Complete, call_llm, model_chain
from valuation.models import MetricSet
from valuation.progress import NullProgress, ProgressReporter

logger = logging.getLogger(__name__)

# Confidence recorded for a field whose segments disagreed.
CONFLICT_CONFIDENCE = 0.7
# Confidence recorded for a field filled by the whole-document backfill.
BACKFILL_CONFIDENCE = 0.5


def _differs(a, b) -> bool:
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return not math.isclose(a, b, rel_tol=1e-3)
    return str(a).strip().lower() != str(b).strip().lower()


def merge_segment_results(results: Sequence[Optional[MetricSet]]) -> MetricSet:
    """
    Combine per-segment MetricSets in segment order.

    The first non-null value of each leaf is kept.  A later, materially
    different value leaves it in place but caps its confidence at 0.7.
    """
    merged: dict = {}
    scores: dict[str, float] = {}
    paths = leaf_paths(include_text=True)

    for result in results:
        if result is None:
            continue
        data = result.to_json_dict()
        for path in paths:
            value = get_leaf(data, path)
            if value is None:
                continue
            key = path_key(path)
            current = get_leaf(merged, path)
            if current is None:
                set_leaf(merged, path, value)
                scores.setdefault(key, 1.0)
            elif _differs(current, value):
                scores[key] = min(scores.get(key, 1.0), CONFLICT_CONFIDENCE)
                logger.info("Conflicting values for %s: %s vs %s (keeping first)", key, current, value)

    merged["confidenceScores"] = scores
    return MetricSet.model_validate(merged)


class BaseMetricExtractor:
    """
    Layered extractor.  *complete* is the language-model call (defaults to
    ``call_llm``); *cache* is shared between calls so identical text is only
    extracted once.
    """

    def __init__(
        self,
        complete: Complete | None = None,
        models: Optional[Sequence[str]] = None,
        cache: BoundedCache | None = None,
        concurrency: int | None = None,
        segment_chars: int | None = None,
    ):
        self.complete = complete or call_llm
        self.models = model_chain(models)
        self.cache = cache if cache is not None else BoundedCache()
        self.concurrency = concurrency or config.EXTRACTION_CONCURRENCY
        self.segment_chars = segment_chars or config.EXTRACTION_SEGMENT_CHARS

    async def extract(
        self,
        text: str,
        segments: Optional[Sequence[str]] = None,
        progress: ProgressReporter | None = None,
    ) -> MetricSet:
        progress = progress or NullProgress()
        if not text or not text.strip():
            return MetricSet()

        key = content_hash(text)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Using cached metrics for document %s…", key[:12])
            progress.update("Using cached metrics", 100)
            return cached

        if segments:
            segments = group_pages(list(segments), self.segment_chars) or [text]
        else:
            segments = split_into_pages(text, self.segment_chars) or [text]
        logger.info("Extracting metrics from %d segments", len(segments))
        total = len(segments)

        async def _segment(index: int, segment: str) -> MetricSet:
            return await self.extract_segment(segment, index, total)

        def _done(completed: int, count: int) -> None:
            progress.advance(completed, count, "Extracting metrics")

        results = await run_in_waves(segments, _segment, self.concurrency, on_item_done=_done)
        merged = merge_segment_results(results)

        if count_key_metrics(merged) < 2:
            logger.info("Only %d key metrics after merge; backfilling from whole-document patterns",
                        count_key_metrics(merged))
            merged = fill_nulls(merged, extract_with_patterns(text), confidence=BACKFILL_CONFIDENCE)

        logger.info("Base extraction filled %d fields", count_filled(merged))
        self.cache.put(key, merged)
        return merged

    async def extract_segment(self, segment: str, index: int = 0, total: int = 1) -> MetricSet:
        """Run the tier chain for one segment; never raises."""
        strategies = [Strategy(model, self._model_tier(model, index, total)) for model in self.models]
        strategies.append(Strategy("patterns", self._pattern_tier))
        try:
            outcome = await first_success(strategies, segment, label=f"segment {index + 1}/{total}")
        except AllStrategiesFailed:
            logger.warning("Segment %d/%d: every tier failed, using empty metrics", index + 1, total)
            return MetricSet()
        logger.debug("Segment %d/%d extracted via %s", index + 1, total, outcome.tier)
        return outcome.value

    def _model_tier(self, model: str, index: int, total: int):
        async def _run(segment: str) -> MetricSet:
            reply = await self.complete(
                segment_prompt(segment, index, total),
                model=model,
                system=EXTRACTION_SYSTEM_PROMPT,
                temperature=0.1,
                max_tokens=1500,
            )
            data = parse_json_object(reply)
            if data is None:
                raise SchemaViolation(f"{model} reply held no JSON object", raw_response=reply)
            return MetricSet.model_validate(data)

        return _run

    async def _pattern_tier(self, segment: str) -> MetricSet:
        metrics = extract_with_patterns(segment)
        if count_filled(metrics) == 0:
            raise ExtractionFailure("no labeled values in segment")
        return metrics
