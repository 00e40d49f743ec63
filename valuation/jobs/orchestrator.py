"""
Job orchestrator — runs one uploaded PDF through every stage, detached from
the request that submitted it.

    pending
      → processing   store  5% · normalize/chunk/embed 10–60% · base
                     extraction 65–80% · enhanced validation 80–92% ·
                     reconcile + save 95%
      → completed    final metrics, confidence, chunk count in ``result``
      | failed       error message; only storage failures and uncaught
                     exceptions end up here

Callers poll ``JobStore.get`` or iterate ``subscribe(job_id)``.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from valuation import config
from valuation.corpus.manager import save_metrics
from valuation.extraction.base import BaseMetricExtractor
from valuation.ingest.normalizer import DocumentNormalizer
from valuation.ingest.pipeline import ingest_document
from valuation.jobs.store import JobStore
from valuation.models import JobStatus, MetricSet, PipelineResult, ProcessingJob
from valuation.progress import CallbackProgress
from valuation.reconcile import MergePrecedence, base_confidence, reconcile
from valuation.storage import LocalFileStorage
from valuation.validation.enhanced import EnhancedValidator

logger = logging.getLogger(__name__)


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore | None = None,
        storage: LocalFileStorage | None = None,
        normalizer: DocumentNormalizer | None = None,
        extractor: BaseMetricExtractor | None = None,
        validator: EnhancedValidator | None = None,
        precedence: MergePrecedence | str | None = None,
        enhanced: bool = True,
        db_path: str | None = None,
    ):
        self.db_path = db_path or config.DATABASE_PATH
        self.store = store or JobStore(self.db_path)
        self.storage = storage or LocalFileStorage()
        self.normalizer = normalizer or DocumentNormalizer()
        self.extractor = extractor or BaseMetricExtractor()
        self.validator = validator or EnhancedValidator()
        self.precedence = MergePrecedence(precedence or config.MERGE_PRECEDENCE)
        self.enhanced = enhanced
        self._tasks: dict[str, asyncio.Task] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    # ── Submission ────────────────────────────────────────────────────────

    def submit(self, data: bytes, filename: str) -> ProcessingJob:
        """Create a pending job and start processing it in the background."""
        job = self.store.create(filename)
        task = asyncio.create_task(self.run(job.id, data, filename))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        logger.info("Job %s queued for %s", job.id, filename)
        return job

    async def wait(self, job_id: str) -> Optional[ProcessingJob]:
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self.store.get(job_id)

    # ── Status fan-out ────────────────────────────────────────────────────

    def _update(self, job_id: str, **changes) -> ProcessingJob:
        job = self.store.update(job_id, **changes)
        for queue in self._subscribers.get(job_id, []):
            queue.put_nowait(job)
        return job

    async def subscribe(self, job_id: str) -> AsyncIterator[ProcessingJob]:
        """Yield job snapshots, starting with the current one, until the job is terminal."""
        job = self.store.get(job_id)
        if job is None:
            raise KeyError(f"Job {job_id} not found")
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        try:
            yield job
            while not job.status.is_terminal:
                job = await queue.get()
                yield job
        finally:
            self._subscribers[job_id].remove(queue)
            if not self._subscribers[job_id]:
                del self._subscribers[job_id]

    # ── Pipeline ──────────────────────────────────────────────────────────

    async def run(self, job_id: str, data: bytes, filename: str) -> ProcessingJob:
        """Process one file to a terminal job state. Never raises."""
        warnings: list[str] = []

        def _report(message: str, percent: Optional[float]) -> None:
            self._update(job_id, message=message, progress=percent)

        progress = CallbackProgress(_report)

        try:
            self._update(job_id, status=JobStatus.PROCESSING, progress=5, message="Storing uploaded file")
            storage_ref = self.storage.save(data, filename)

            ingest = await ingest_document(
                data,
                filename,
                storage_ref,
                normalizer=self.normalizer,
                progress=progress.span(10, 60),
                db_path=self.db_path,
            )
            self._update(job_id, document_id=ingest.doc_id)
            if ingest.embedding_failures:
                warnings.append(f"{ingest.embedding_failures} chunk embeddings are placeholders")
            if ingest.parse_tier == "placeholder":
                warnings.append("No text could be extracted from the document")

            self._update(job_id, progress=65, message="Extracting financial metrics")
            try:
                base = await self.extractor.extract(
                    ingest.text, segments=ingest.pages, progress=progress.span(65, 80)
                )
            except Exception as e:
                logger.exception("Base extraction failed for job %s", job_id)
                warnings.append(f"Base extraction failed: {e}")
                base = MetricSet()

            validation = None
            if self.enhanced:
                self._update(job_id, progress=80, message="Validating metrics")
                try:
                    validation = await self.validator.validate(ingest.text, progress=progress.span(80, 92))
                except Exception as e:
                    logger.warning("Enhanced validation failed for job %s, continuing with base metrics: %s", job_id, e)
                    warnings.append(f"Enhanced validation failed: {e}")

            self._update(job_id, progress=95, message="Saving metrics")
            final = reconcile(base, validation, self.precedence)
            if validation is not None:
                confidence = validation.confidence
            else:
                confidence = base_confidence(final)
                warnings.append("Confidence is based on base extraction only")
            save_metrics(ingest.doc_id, final, validation, confidence, db_path=self.db_path)

            result = PipelineResult(
                document_id=ingest.doc_id,
                filename=filename,
                parse_tier=ingest.parse_tier,
                chunk_count=ingest.chunks_created,
                metrics=final.to_json_dict(),
                confidence=confidence,
                validation=validation.model_dump(mode="json") if validation is not None else None,
                warnings=warnings,
            )
            job = self._update(
                job_id,
                status=JobStatus.COMPLETED,
                progress=100,
                message="Processing complete",
                result=result.model_dump(mode="json"),
            )
            logger.info("Job %s completed (confidence %d%%)", job_id, confidence)
            return job

        except Exception as e:
            logger.exception("Job %s failed", job_id)
            return self._update(
                job_id,
                status=JobStatus.FAILED,
                message="Processing failed",
                error_message=str(e) or type(e).__name__,
            )
