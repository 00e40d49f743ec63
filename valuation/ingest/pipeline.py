"""
Ingest pipeline — PDF bytes to stored pages, chunks and embeddings.

    PDF bytes
      → normalize (tiered: service → pdf-library → raw bytes → placeholder)
      → chunk pages and visual elements
      → embed chunks via Ollama (placeholders on failure)
      → write document + chunks to SQLite in one transaction
"""

import json
import logging
import uuid
from datetime import datetime, timezone

from valuation import config
from valuation.database import get_db, init_db
from valuation.errors import StorageFailure
from valuation.ingest.chunker import chunk_document
from valuation.ingest.embedder import embed_texts
from valuation.ingest.normalizer import DocumentNormalizer
from valuation.models import Chunk, IngestResult, NormalizedDocument
from valuation.progress import NullProgress, ProgressReporter

logger = logging.getLogger(__name__)


def store_document(
    doc_id: str,
    doc: NormalizedDocument,
    storage_ref: str,
    chunks: list[Chunk],
    db_path: str | None = None,
) -> None:
    """Insert the document row and all its chunks atomically."""
    now = datetime.now(timezone.utc).isoformat()
    try:
        with get_db(db_path) as conn:
            conn.execute(
                """INSERT INTO documents
                   (id, filename, storage_ref, content_text, page_count, chunk_count,
                    parse_tier, created_at, processed_at)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (doc_id, doc.filename, storage_ref, doc.text, len(doc.pages),
                 len(chunks), doc.parse_tier, now, now),
            )
            conn.executemany(
                """INSERT INTO chunks
                   (doc_id, chunk_index, page_number, content, token_count,
                    is_visual, metadata_json, embedding)
                   VALUES (?,?,?,?,?,?,?,?)""",
                [
                    (
                        doc_id,
                        c.chunk_index,
                        c.page_number,
                        c.content,
                        c.token_count,
                        int(c.is_visual),
                        json.dumps(c.metadata, ensure_ascii=False),
                        c.embedding.tobytes(),
                    )
                    for c in chunks
                ],
            )
    except Exception as e:
        raise StorageFailure(f"Could not store document {doc.filename}: {e}") from e


async def ingest_document(
    data: bytes,
    filename: str,
    storage_ref: str,
    doc_id: str | None = None,
    normalizer: DocumentNormalizer | None = None,
    progress: ProgressReporter | None = None,
    db_path: str | None = None,
) -> IngestResult:
    """
    Full ingest for one PDF whose bytes are already in storage.

    Progress bands: normalize 0–20, chunk 20–30, embed 30–95, persist 95–100.
    Raises StorageFailure if the database write fails; nothing is left behind.
    """
    db_path = db_path or config.DATABASE_PATH
    init_db(db_path)
    doc_id = doc_id or str(uuid.uuid4())
    progress = progress or NullProgress()
    normalizer = normalizer or DocumentNormalizer()

    # ── 1. Normalize ─────────────────────────────────────────────────────────
    progress.update(f"Extracting text from {filename}", 0)
    doc = await normalizer.normalize(data, filename)

    # ── 2. Chunk ────────────────────────────────────────────────────────────
    progress.update(f"Chunking {len(doc.pages)} pages", 20)
    chunks = chunk_document(doc)
    logger.info("Created %d chunks (%d visual) for %s",
                len(chunks), sum(c.is_visual for c in chunks), filename)

    # ── 3. Embed ────────────────────────────────────────────────────────────
    embeddings, failures = await embed_texts(
        [c.content for c in chunks], progress=progress.span(30, 95),
    )
    for chunk, emb in zip(chunks, embeddings):
        chunk.embedding = emb

    # ── 4. Persist ──────────────────────────────────────────────────────────
    progress.update("Saving document and chunks", 95)
    store_document(doc_id, doc, storage_ref, chunks, db_path)
    progress.update("Document stored", 100)

    logger.info("Ingest complete: %s → %s (tier=%s)", filename, doc_id, doc.parse_tier)
    return IngestResult(
        doc_id=doc_id,
        filename=filename,
        parse_tier=doc.parse_tier,
        page_count=len(doc.pages),
        chunks_created=len(chunks),
        embedding_failures=failures,
        text=doc.text,
        pages=[p.content for p in doc.pages],
    )
