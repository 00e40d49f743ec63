"""
SQLite database initialisation and helpers.
"""

import os
import sqlite3
from contextlib import contextmanager

from valuation.config import DATABASE_PATH

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT PRIMARY KEY,
    filename        TEXT NOT NULL,
    storage_ref     TEXT NOT NULL,
    content_text    TEXT NOT NULL DEFAULT '',
    page_count      INTEGER NOT NULL DEFAULT 0,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    parse_tier      TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    processed_at    TEXT
);

CREATE TABLE IF NOT EXISTS chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id          TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    chunk_index     INTEGER NOT NULL,
    page_number     INTEGER,
    content         TEXT NOT NULL,
    token_count     INTEGER NOT NULL DEFAULT 0,
    is_visual       INTEGER NOT NULL DEFAULT 0,
    metadata_json   TEXT NOT NULL DEFAULT '{}',
    embedding       BLOB NOT NULL,
    UNIQUE(doc_id, chunk_index)
);

CREATE TABLE IF NOT EXISTS extracted_metrics (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id          TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    metric_type     TEXT NOT NULL,
    metric_data     TEXT NOT NULL,
    confidence      REAL,
    extracted_at    TEXT NOT NULL,
    UNIQUE(doc_id, metric_type)
);

CREATE TABLE IF NOT EXISTS processing_jobs (
    id              TEXT PRIMARY KEY,
    filename        TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    progress        INTEGER NOT NULL DEFAULT 0,
    message         TEXT NOT NULL DEFAULT '',
    document_id     TEXT,
    result_json     TEXT,
    error_message   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    completed_at    TEXT
);

CREATE INDEX IF NOT EXISTS idx_chunks_doc ON chunks(doc_id);
CREATE INDEX IF NOT EXISTS idx_chunks_visual ON chunks(doc_id, is_visual);
CREATE INDEX IF NOT EXISTS idx_metrics_doc ON extracted_metrics(doc_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON processing_jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created ON processing_jobs(created_at);
"""


def _ensure_dir(path: str):
    db_dir = os.path.dirname(path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)


def init_db(db_path: str | None = None):
    """Create tables if they don't exist yet."""
    path = db_path or DATABASE_PATH
    _ensure_dir(path)
    conn = sqlite3.connect(path)
    conn.executescript(_SCHEMA)
    conn.close()


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    path = db_path or DATABASE_PATH
    _ensure_dir(path)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db(db_path: str | None = None):
    """Context manager that yields a connection and auto-commits/rollbacks."""
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
