"""
Corpus manager — read and write accessors for stored documents, their
chunks and their extracted metrics.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from valuation.config import DATABASE_PATH
from valuation.database import get_db
from valuation.errors import StorageFailure
from valuation.models import MetricSet, ValidationResult

# extracted_metrics row holding the validation report rather than a metric group
VALIDATION_ROW = "validation"


def save_metrics(
    doc_id: str,
    metrics: MetricSet,
    validation: Optional[ValidationResult] = None,
    confidence: Optional[int] = None,
    db_path: str | None = None,
) -> None:
    """Replace the document's metrics: one row per metric group plus the validation report."""
    db_path = db_path or DATABASE_PATH
    now = datetime.now(timezone.utc).isoformat()
    data = metrics.to_json_dict()
    scores = data.pop("confidenceScores", {})
    rows = []
    for group, values in data.items():
        group_scores = [v for k, v in scores.items() if k.startswith(f"{group}.")]
        group_confidence = min(group_scores) if group_scores else None
        rows.append((doc_id, group, json.dumps(values), group_confidence, now))
    if validation is not None:
        rows.append((doc_id, VALIDATION_ROW, validation.model_dump_json(), confidence, now))

    try:
        with get_db(db_path) as conn:
            conn.execute("DELETE FROM extracted_metrics WHERE doc_id=?", (doc_id,))
            conn.executemany(
                """INSERT INTO extracted_metrics
                   (doc_id, metric_type, metric_data, confidence, extracted_at)
                   VALUES (?,?,?,?,?)""",
                rows,
            )
            conn.execute("UPDATE documents SET processed_at=? WHERE id=?", (now, doc_id))
    except Exception as e:
        raise StorageFailure(f"Could not store metrics for {doc_id}: {e}") from e


def get_metrics(doc_id: str, db_path: str | None = None) -> Optional[dict]:
    """Return ``{"metrics": {...}, "validation": {...} | None}`` or None if nothing is stored."""
    db_path = db_path or DATABASE_PATH
    with get_db(db_path) as conn:
        rows = conn.execute(
            "SELECT metric_type, metric_data, confidence FROM extracted_metrics WHERE doc_id=?",
            (doc_id,),
        ).fetchall()
    if not rows:
        return None

    metrics: dict = {}
    validation = None
    for r in rows:
        if r["metric_type"] == VALIDATION_ROW:
            validation = json.loads(r["metric_data"])
        else:
            metrics[r["metric_type"]] = json.loads(r["metric_data"])
    return {
        "metrics": MetricSet.model_validate(metrics).to_json_dict(),
        "validation": validation,
    }


def list_documents(db_path: str | None = None) -> list[dict]:
    """Return summary info for all stored documents."""
    db_path = db_path or DATABASE_PATH
    with get_db(db_path) as conn:
        rows = conn.execute(
            """SELECT id, filename, page_count, chunk_count, parse_tier,
                      created_at, processed_at
               FROM documents
               ORDER BY created_at DESC"""
        ).fetchall()
    return [dict(r) for r in rows]


def get_document(doc_id: str, db_path: str | None = None) -> Optional[dict]:
    """Return the document row without its full text."""
    db_path = db_path or DATABASE_PATH
    with get_db(db_path) as conn:
        row = conn.execute(
            """SELECT id, filename, storage_ref, page_count, chunk_count, parse_tier,
                      created_at, processed_at
               FROM documents WHERE id=?""",
            (doc_id,),
        ).fetchone()
    return dict(row) if row else None


def get_chunks(doc_id: str, with_embeddings: bool = False, db_path: str | None = None) -> list[dict]:
    """Chunks in chunk_index order; embeddings decoded to float32 arrays on request."""
    db_path = db_path or DATABASE_PATH
    with get_db(db_path) as conn:
        rows = conn.execute(
            """SELECT chunk_index, page_number, content, token_count, is_visual,
                      metadata_json, embedding
               FROM chunks WHERE doc_id=? ORDER BY chunk_index""",
            (doc_id,),
        ).fetchall()

    chunks = []
    for r in rows:
        chunk = {
            "chunk_index": r["chunk_index"],
            "page_number": r["page_number"],
            "content": r["content"],
            "token_count": r["token_count"],
            "is_visual": bool(r["is_visual"]),
            "metadata": json.loads(r["metadata_json"]),
        }
        if with_embeddings:
            chunk["embedding"] = np.frombuffer(r["embedding"], dtype=np.float32)
        chunks.append(chunk)
    return chunks


def delete_document(doc_id: str, db_path: str | None = None) -> bool:
    """Delete a document and all associated data. Returns True if found."""
    db_path = db_path or DATABASE_PATH
    with get_db(db_path) as conn:
        cur = conn.execute("DELETE FROM documents WHERE id=?", (doc_id,))
        # cascading delete handles chunks + metrics
    return cur.rowcount > 0
