"""
Tests for the small pipeline building blocks: fallback chains, concurrency
waves, progress reporters and the bounded cache.
"""

import asyncio

import pytest

from valuation.cache import BoundedCache, content_hash
from valuation.concurrency import run_in_waves
from valuation.errors import AllStrategiesFailed, ParseFailure
from valuation.fallback import Strategy, first_success
from valuation.progress import CallbackProgress, NullProgress


def _tier(result=None, error=None, calls=None, name=""):
    async def _run(arg):
        if calls is not None:
            calls.append(name)
        if error is not None:
            raise error
        return result if result is not None else arg

    return _run


class TestFirstSuccess:
    @pytest.mark.asyncio
    async def test_first_tier_wins(self):
        calls = []
        outcome = await first_success(
            [Strategy("a", _tier("A", calls=calls, name="a")), Strategy("b", _tier("B", calls=calls, name="b"))],
            "input",
        )
        assert outcome.value == "A"
        assert outcome.tier == "a"
        assert not outcome.degraded
        assert calls == ["a"]

    @pytest.mark.asyncio
    async def test_falls_through_failures(self):
        outcome = await first_success(
            [
                Strategy("service", _tier(error=ParseFailure("down"))),
                Strategy("library", _tier(error=ValueError("bad pdf"))),
                Strategy("placeholder", _tier("ok")),
            ],
            b"bytes",
        )
        assert outcome.value == "ok"
        assert outcome.tier == "placeholder"
        assert [a.tier for a in outcome.attempts] == ["service", "library"]
        assert outcome.attempts[0].error == "down"

    @pytest.mark.asyncio
    async def test_all_fail(self):
        with pytest.raises(AllStrategiesFailed) as exc:
            await first_success(
                [Strategy("a", _tier(error=ValueError("x"))), Strategy("b", _tier(error=ValueError("y")))],
                None,
            )
        assert [a.tier for a in exc.value.attempts] == ["a", "b"]
        assert "a: x" in str(exc.value)

    @pytest.mark.asyncio
    async def test_no_strategies(self):
        with pytest.raises(AllStrategiesFailed):
            await first_success([], None)


class TestRunInWaves:
    @pytest.mark.asyncio
    async def test_preserves_input_order(self):
        async def worker(index, item):
            # later items finish first
            await asyncio.sleep(0.001 * (10 - index))
            return item * 2

        results = await run_in_waves(list(range(10)), worker, limit=4)
        assert results == [i * 2 for i in range(10)]

    @pytest.mark.asyncio
    async def test_respects_limit(self):
        in_flight = 0
        peak = 0

        async def worker(index, item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item

        await run_in_waves(list(range(25)), worker, limit=3)
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_reports_each_item(self):
        seen = []

        async def worker(index, item):
            return item

        await run_in_waves(["a", "b", "c"], worker, limit=2, on_item_done=lambda done, total: seen.append((done, total)))
        assert seen == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.asyncio
    async def test_empty(self):
        async def worker(index, item):
            return item

        assert await run_in_waves([], worker, limit=5) == []

    @pytest.mark.asyncio
    async def test_worker_exception_propagates(self):
        async def worker(index, item):
            if item == 2:
                raise ValueError("bad item")
            return item

        with pytest.raises(ValueError):
            await run_in_waves([1, 2, 3], worker, limit=2)


class TestProgress:
    def test_span_maps_into_band(self):
        updates = []
        root = CallbackProgress(lambda message, percent: updates.append((message, percent)))
        span = root.span(10, 60)
        span.update("start", 0)
        span.update("half", 50)
        span.update("end", 100)
        assert [p for _, p in updates] == [10, 35, 60]

    def test_nested_spans(self):
        updates = []
        root = CallbackProgress(lambda message, percent: updates.append(percent))
        root.span(10, 60).span(30, 95).update("embedding", 100)
        assert updates == [pytest.approx(10 + 50 * 0.95)]

    def test_advance_message(self):
        updates = []
        root = CallbackProgress(lambda message, percent: updates.append((message, percent)))
        root.advance(3, 4, "Embedding chunks")
        assert updates == [("Embedding chunks: 3/4 (75%)", 75.0)]

    def test_percent_clamped(self):
        updates = []
        root = CallbackProgress(lambda message, percent: updates.append(percent))
        root.span(0, 50).update("over", 150)
        assert updates == [50]

    def test_message_without_percent(self):
        updates = []
        root = CallbackProgress(lambda message, percent: updates.append((message, percent)))
        root.span(20, 40).update("note")
        assert updates == [("note", None)]

    def test_null_progress_accepts_everything(self):
        progress = NullProgress()
        progress.update("anything", 50)
        progress.span(0, 10).advance(1, 2, "x")


class TestBoundedCache:
    def test_get_missing(self):
        assert BoundedCache(capacity=2).get("nope") is None

    def test_evicts_oldest(self):
        cache = BoundedCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_values_are_copied(self):
        cache = BoundedCache(capacity=2)
        value = {"revenue": 1}
        cache.put("k", value)
        value["revenue"] = 2
        got = cache.get("k")
        got["revenue"] = 3
        assert cache.get("k") == {"revenue": 1}

    def test_overwrite_does_not_evict(self):
        cache = BoundedCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_content_hash_is_stable(self):
        assert content_hash("same text") == content_hash("same text")
        assert content_hash("same text") != content_hash("other text")
        assert len(content_hash("x")) == 64
