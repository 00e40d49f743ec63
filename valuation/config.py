"""
Central configuration — reads environment variables and provides defaults.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ── LLM (OpenAI-compatible endpoint) ─────────────────────────────────────────
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY") or os.getenv("OPENROUTER_API_KEY", "")
OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://openrouter.ai/api/v1")
LLM_MODEL: str = os.getenv("LLM_MODEL", "openai/gpt-4o")
LLM_FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "openai/gpt-4o-mini")
LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "60"))
LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "2"))

# ── Document-parsing service ─────────────────────────────────────────────────
PARSER_URL: str = os.getenv("PARSER_URL", "https://platform.reducto.ai")
PARSER_API_KEY: str = os.getenv("PARSER_API_KEY") or os.getenv("REDUCTO_API_KEY", "")
PARSER_TIMEOUT: float = float(os.getenv("PARSER_TIMEOUT", "120"))

# ── Ollama (embeddings) ──────────────────────────────────────────────────────
OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11435")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")
EMBEDDING_DIM: int = int(os.getenv("EMBEDDING_DIM", "768"))
EMBED_TIMEOUT: float = float(os.getenv("EMBED_TIMEOUT", "60"))

# ── Concurrency waves ─────────────────────────────────────────────────────────
EMBEDDING_CONCURRENCY: int = int(os.getenv("EMBEDDING_CONCURRENCY", "12"))
EXTRACTION_CONCURRENCY: int = int(os.getenv("EXTRACTION_CONCURRENCY", "8"))

# ── Database ──────────────────────────────────────────────────────────────────
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/valuation.db")

# ── Uploads ───────────────────────────────────────────────────────────────────
UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "data/uploads")

# ── Page splitting ────────────────────────────────────────────────────────────
PAGE_SPLIT_THRESHOLD: int = int(os.getenv("PAGE_SPLIT_THRESHOLD", "2000"))
PAGE_TARGET_CHARS: int = int(os.getenv("PAGE_TARGET_CHARS", "2500"))

# ── Chunking ──────────────────────────────────────────────────────────────────
CHUNK_MAX_CHARS: int = int(os.getenv("CHUNK_MAX_CHARS", "2000"))
CHUNK_OVERLAP_WORDS: int = int(os.getenv("CHUNK_OVERLAP_WORDS", "20"))

# ── Extraction ────────────────────────────────────────────────────────────────
EXTRACTION_SEGMENT_CHARS: int = int(os.getenv("EXTRACTION_SEGMENT_CHARS", "2000"))
VALIDATION_CONTEXT_TOKENS: int = int(os.getenv("VALIDATION_CONTEXT_TOKENS", "20000"))
METRICS_CACHE_SIZE: int = int(os.getenv("METRICS_CACHE_SIZE", "10"))

# "enhanced": enhanced value overrides base when non-null
# "fill_nulls": enhanced value only fills a null base value
MERGE_PRECEDENCE: str = os.getenv("MERGE_PRECEDENCE", "enhanced")
DATE_AWARE_VALIDATION: bool = os.getenv("DATE_AWARE_VALIDATION", "true").lower() in ("1", "true", "yes")
