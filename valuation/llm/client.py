"""
Async wrapper around an OpenAI-compatible endpoint for LLM calls.

``call_llm`` talks to one model with a request timeout and a few retries;
``call_llm_with_fallback`` walks the primary → secondary model chain.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

import openai

from valuation import config
from valuation.errors import ExtractionFailure
from valuation.fallback import Strategy, first_success

logger = logging.getLogger(__name__)

# Signature shared by every completion callable the extractors accept.
Complete = Callable[..., Awaitable[str]]


async def call_llm(
    prompt: str,
    model: str | None = None,
    system: str | None = None,
    temperature: float = 0,
    max_tokens: int | None = None,
    max_retries: int | None = None,
    timeout: float | None = None,
) -> str:
    """Send a single-turn prompt and return the assistant's text."""
    model = model or config.LLM_MODEL
    max_retries = max_retries if max_retries is not None else config.LLM_MAX_RETRIES
    timeout = timeout if timeout is not None else config.LLM_TIMEOUT

    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    for attempt in range(max_retries):
        try:
            async with openai.AsyncOpenAI(
                api_key=config.OPENAI_API_KEY,
                base_url=config.OPENAI_BASE_URL,
                timeout=timeout,
                max_retries=0,
            ) as client:
                kwargs = {"model": model, "messages": messages, "temperature": temperature}
                if max_tokens:
                    kwargs["max_tokens"] = max_tokens
                response = await client.chat.completions.create(**kwargs)
                content = response.choices[0].message.content
                if not content or not content.strip():
                    raise ExtractionFailure(f"{model} returned an empty response")
                return content.strip()
        except Exception as e:
            logger.warning("LLM call to %s attempt %d failed: %s", model, attempt + 1, e)
            if attempt < max_retries - 1:
                await asyncio.sleep(1)
            else:
                raise
    raise ExtractionFailure(f"{model}: no attempts made (max_retries={max_retries})")


def model_chain(models: Optional[Sequence[str]] = None) -> list[str]:
    """Configured primary → secondary model order, without duplicates."""
    chain = list(models) if models else [config.LLM_MODEL, config.LLM_FALLBACK_MODEL]
    return [m for i, m in enumerate(chain) if m and m not in chain[:i]]


async def call_llm_with_fallback(
    prompt: str,
    system: str | None = None,
    models: Optional[Sequence[str]] = None,
    **kwargs,
) -> str:
    """Try each model in the chain; the first non-empty reply wins."""

    def _for_model(model: str) -> Strategy[str]:
        async def _run(p: str) -> str:
            return await call_llm(p, model=model, system=system, **kwargs)

        return Strategy(name=model, run=_run)

    outcome = await first_success([_for_model(m) for m in model_chain(models)], prompt, label="llm")
    return outcome.value
