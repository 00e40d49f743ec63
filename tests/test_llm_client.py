"""
Tests for valuation.llm.client — single-model calls and the model chain.
"""

from types import SimpleNamespace

import pytest

from valuation import config
from valuation.errors import AllStrategiesFailed, ExtractionFailure
from valuation.llm import client
from valuation.llm.client import call_llm, call_llm_with_fallback, model_chain


class FakeAsyncOpenAI:
    """Stands in for openai.AsyncOpenAI; replies are consumed in order."""

    replies: list = []
    requests: list = []

    def __init__(self, **kwargs):
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def _create(self, **kwargs):
        FakeAsyncOpenAI.requests.append(kwargs)
        reply = FakeAsyncOpenAI.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


@pytest.fixture
def fake_openai(monkeypatch):
    FakeAsyncOpenAI.replies = []
    FakeAsyncOpenAI.requests = []
    monkeypatch.setattr(client.openai, "AsyncOpenAI", FakeAsyncOpenAI)
    return FakeAsyncOpenAI


class TestModelChain:
    def test_configured_order(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_MODEL", "big")
        monkeypatch.setattr(config, "LLM_FALLBACK_MODEL", "small")
        assert model_chain() == ["big", "small"]

    def test_duplicates_and_blanks_dropped(self):
        assert model_chain(["a", "", "a", "b"]) == ["a", "b"]


class TestCallLLM:
    @pytest.mark.asyncio
    async def test_returns_stripped_text(self, fake_openai):
        fake_openai.replies = ["  VALUE: 5\n"]
        reply = await call_llm("prompt", model="m", system="sys", max_tokens=50, max_retries=1)
        assert reply == "VALUE: 5"
        request = fake_openai.requests[0]
        assert request["model"] == "m"
        assert request["max_tokens"] == 50
        assert request["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, fake_openai):
        fake_openai.replies = [RuntimeError("rate limited"), "ok"]
        assert await call_llm("prompt", model="m", max_retries=2) == "ok"
        assert len(fake_openai.requests) == 2

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_failure(self, fake_openai):
        fake_openai.replies = ["   "]
        with pytest.raises(ExtractionFailure):
            await call_llm("prompt", model="m", max_retries=1)

    @pytest.mark.asyncio
    async def test_zero_retries(self, fake_openai):
        with pytest.raises(ExtractionFailure):
            await call_llm("prompt", model="m", max_retries=0)


class TestCallWithFallback:
    @pytest.mark.asyncio
    async def test_falls_back_to_second_model(self, monkeypatch):
        calls = []

        async def fake_call(prompt, model=None, system=None, **kwargs):
            calls.append(model)
            if model == "primary":
                raise ExtractionFailure("timeout")
            return f"reply from {model}"

        monkeypatch.setattr(client, "call_llm", fake_call)
        reply = await call_llm_with_fallback("prompt", models=["primary", "secondary"])
        assert reply == "reply from secondary"
        assert calls == ["primary", "secondary"]

    @pytest.mark.asyncio
    async def test_all_models_fail(self, monkeypatch):
        async def fake_call(prompt, model=None, system=None, **kwargs):
            raise ExtractionFailure(f"{model} down")

        monkeypatch.setattr(client, "call_llm", fake_call)
        with pytest.raises(AllStrategiesFailed) as exc:
            await call_llm_with_fallback("prompt", models=["primary", "secondary"])
        assert [a.tier for a in exc.value.attempts] == ["primary", "secondary"]

    @pytest.mark.asyncio
    async def test_passes_options_through(self, monkeypatch):
        seen = {}

        async def fake_call(prompt, model=None, system=None, **kwargs):
            seen.update(kwargs, system=system)
            return "ok"

        monkeypatch.setattr(client, "call_llm", fake_call)
        await call_llm_with_fallback("prompt", system="sys", models=["m"], temperature=0, max_tokens=10)
        assert seen == {"system": "sys", "temperature": 0, "max_tokens": 10}
