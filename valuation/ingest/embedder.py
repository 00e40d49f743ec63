"""
Ollama embedding client — one 768-d vector per chunk, bounded concurrency.

A chunk whose embedding call fails gets a deterministic placeholder vector
(seeded from its text) so the output always lines up with the input; the
number of placeholders is returned alongside.
"""

import hashlib
import logging
from typing import Sequence

import httpx
import numpy as np

from valuation import config
from valuation.concurrency import run_in_waves
from valuation.progress import NullProgress, ProgressReporter

logger = logging.getLogger(__name__)


def placeholder_embedding(text: str, dim: int | None = None) -> np.ndarray:
    """Unit-length pseudo-random vector; same text → same vector."""
    dim = dim or config.EMBEDDING_DIM
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    vec = np.random.default_rng(seed).standard_normal(dim).astype(np.float32)
    return vec / np.linalg.norm(vec)


async def embed_one(client: httpx.AsyncClient, text: str, model: str | None = None) -> np.ndarray:
    resp = await client.post(
        f"{config.OLLAMA_URL}/api/embed",
        json={"model": model or config.EMBEDDING_MODEL, "input": text},
    )
    resp.raise_for_status()
    embeddings = resp.json().get("embeddings") or []
    if not embeddings:
        raise ValueError("Ollama returned no embedding")
    vec = np.array(embeddings[0], dtype=np.float32)
    if vec.shape != (config.EMBEDDING_DIM,):
        raise ValueError(f"expected {config.EMBEDDING_DIM}-d embedding, got shape {vec.shape}")
    return vec


async def embed_texts(
    texts: Sequence[str],
    model: str | None = None,
    concurrency: int | None = None,
    progress: ProgressReporter | None = None,
) -> tuple[list[np.ndarray], int]:
    """
    Embed *texts* in waves of ``concurrency`` requests.

    Returns ``(embeddings, failures)``; ``embeddings[i]`` belongs to ``texts[i]``.
    """
    concurrency = concurrency or config.EMBEDDING_CONCURRENCY
    progress = progress or NullProgress()
    failures = 0

    async with httpx.AsyncClient(timeout=config.EMBED_TIMEOUT) as client:

        async def _embed(index: int, text: str) -> np.ndarray:
            nonlocal failures
            try:
                return await embed_one(client, text, model)
            except Exception as e:
                failures += 1
                logger.warning("Embedding chunk %d failed, using placeholder: %s", index, e)
                return placeholder_embedding(text)

        def _done(completed: int, total: int) -> None:
            progress.advance(completed, total, "Embedding chunks")

        embeddings = await run_in_waves(list(texts), _embed, concurrency, on_item_done=_done)

    if failures:
        logger.warning("%d/%d embeddings fell back to placeholders", failures, len(texts))
    return embeddings, failures


async def check_ollama() -> bool:
    """Return True if Ollama is reachable and the embedding model is available."""
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(f"{config.OLLAMA_URL}/api/tags")
            resp.raise_for_status()
            models = [m["name"] for m in resp.json().get("models", [])]
            # Model names may include a tag, e.g. "nomic-embed-text:latest"
            return any(config.EMBEDDING_MODEL in m for m in models)
    except Exception:
        return False
