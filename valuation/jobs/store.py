"""
ProcessingJob persistence.

Status only moves forward: pending → processing → completed | failed (a
pending job may also fail directly).  Completed and failed jobs are final;
any further update raises InvalidJobTransition.  Progress never decreases.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from valuation import config
from valuation.database import get_db, init_db
from valuation.errors import InvalidJobTransition
from valuation.models import JobStatus, ProcessingJob

logger = logging.getLogger(__name__)

_ALLOWED = {
    JobStatus.PENDING: {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_job(row) -> ProcessingJob:
    data = dict(row)
    result_json = data.pop("result_json", None)
    data["result"] = json.loads(result_json) if result_json else None
    return ProcessingJob(**data)


class JobStore:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or config.DATABASE_PATH
        init_db(self.db_path)

    def create(self, filename: str, job_id: str | None = None) -> ProcessingJob:
        now = _now()
        job = ProcessingJob(
            id=job_id or str(uuid.uuid4()),
            filename=filename,
            message="Queued for processing",
            created_at=now,
            updated_at=now,
        )
        with get_db(self.db_path) as conn:
            conn.execute(
                """INSERT INTO processing_jobs
                   (id, filename, status, progress, message, created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?)""",
                (job.id, job.filename, job.status.value, job.progress, job.message, now, now),
            )
        return job

    def get(self, job_id: str) -> Optional[ProcessingJob]:
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM processing_jobs WHERE id=?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list_recent(self, limit: int = 20) -> list[ProcessingJob]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM processing_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def update(
        self,
        job_id: str,
        status: JobStatus | None = None,
        progress: float | None = None,
        message: str | None = None,
        document_id: str | None = None,
        result: dict | None = None,
        error_message: str | None = None,
    ) -> ProcessingJob:
        """Apply a forward-only change and return the updated job."""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM processing_jobs WHERE id=?", (job_id,)).fetchone()
            if row is None:
                raise KeyError(f"Job {job_id} not found")
            job = _row_to_job(row)

            new_status = JobStatus(status) if status is not None else job.status
            if new_status not in _ALLOWED[job.status]:
                raise InvalidJobTransition(f"Job {job_id}: {job.status.value} → {new_status.value}")

            now = _now()
            job.status = new_status
            if progress is not None:
                job.progress = max(job.progress, min(100, int(round(progress))))
            if new_status is JobStatus.COMPLETED:
                job.progress = 100
            if message is not None:
                job.message = message
            if document_id is not None:
                job.document_id = document_id
            if result is not None:
                job.result = result
            if error_message is not None:
                job.error_message = error_message
            if new_status.is_terminal:
                job.completed_at = now
            job.updated_at = now

            conn.execute(
                """UPDATE processing_jobs SET
                   status=?, progress=?, message=?, document_id=?, result_json=?,
                   error_message=?, updated_at=?, completed_at=?
                   WHERE id=?""",
                (
                    job.status.value,
                    job.progress,
                    job.message,
                    job.document_id,
                    json.dumps(job.result) if job.result is not None else None,
                    job.error_message,
                    job.updated_at,
                    job.completed_at,
                    job_id,
                ),
            )
        return job

    def cleanup(self, older_than_days: int = 7) -> int:
        """Delete completed/failed jobs created before the cutoff; returns the count."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        with get_db(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM processing_jobs WHERE status IN (?, ?) AND created_at < ?",
                (JobStatus.COMPLETED.value, JobStatus.FAILED.value, cutoff),
            )
        if cur.rowcount:
            logger.info("Cleaned up %d old jobs", cur.rowcount)
        return cur.rowcount
