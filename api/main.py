"""
FastAPI application — upload a valuation PDF, follow its job, read its metrics.

    POST   /documents              multipart upload → pending job
    GET    /jobs/{id}              job status snapshot
    GET    /jobs/{id}/events       server-sent events until the job is terminal
    GET    /documents              stored documents
    GET    /documents/{id}         one document
    GET    /documents/{id}/metrics final metrics + validation report
    DELETE /documents/{id}         document, chunks and metrics
    GET    /health
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from api.models import DocumentInfo, DocumentsResponse, HealthResponse, JobResponse, MetricsResponse
from valuation import config
from valuation.corpus import manager
from valuation.ingest.embedder import check_ollama
from valuation.jobs.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

# ── Globals ──────────────────────────────────────────────────────────────────
_orchestrator: JobOrchestrator | None = None


def get_orchestrator() -> JobOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = JobOrchestrator()
    return _orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator = get_orchestrator()
    removed = orchestrator.store.cleanup()
    logger.info("Job orchestrator ready (%d old jobs removed).", removed)
    yield


app = FastAPI(
    title="ESOP Valuation Metrics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _db_path() -> str:
    return get_orchestrator().db_path


# ── Jobs ─────────────────────────────────────────────────────────────────────

@app.post("/documents", response_model=JobResponse, status_code=202)
async def upload_document(file: UploadFile):
    """Accept a PDF and start processing it; returns the pending job."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=422, detail="Uploaded file is empty.")
    job = get_orchestrator().submit(content, file.filename or "document.pdf")
    return JobResponse(**job.model_dump(mode="json"))


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    job = get_orchestrator().store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found.")
    return JobResponse(**job.model_dump(mode="json"))


@app.get("/jobs/{job_id}/events")
async def job_events(job_id: str):
    """Server-sent events: one ``data:`` line per status change until the job ends."""
    orchestrator = get_orchestrator()
    if orchestrator.store.get(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found.")

    async def generate():
        async for job in orchestrator.subscribe(job_id):
            yield f"data: {job.model_dump_json()}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream")


# ── Documents ────────────────────────────────────────────────────────────────

@app.get("/documents", response_model=DocumentsResponse)
async def list_documents():
    docs = manager.list_documents(db_path=_db_path())
    return DocumentsResponse(documents=[DocumentInfo(**d) for d in docs])


@app.get("/documents/{doc_id}", response_model=DocumentInfo)
async def get_document(doc_id: str):
    doc = manager.get_document(doc_id, db_path=_db_path())
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {doc_id} not found.")
    return DocumentInfo(**doc)


@app.get("/documents/{doc_id}/metrics", response_model=MetricsResponse)
async def get_document_metrics(doc_id: str):
    stored = manager.get_metrics(doc_id, db_path=_db_path())
    if stored is None:
        raise HTTPException(status_code=404, detail=f"No metrics for document {doc_id}.")
    return MetricsResponse(document_id=doc_id, **stored)


@app.delete("/documents/{doc_id}")
async def delete_document(doc_id: str):
    orchestrator = get_orchestrator()
    doc = manager.get_document(doc_id, db_path=orchestrator.db_path)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {doc_id} not found.")
    manager.delete_document(doc_id, db_path=orchestrator.db_path)
    if not orchestrator.storage.delete(doc["storage_ref"]):
        logger.warning("Stored file %s for %s was already gone", doc["storage_ref"], doc_id)
    return {"deleted": doc_id}


# ── GET /health ──────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        llm_configured=bool(config.OPENAI_API_KEY),
        parser_configured=bool(config.PARSER_API_KEY),
        ollama_available=await check_ollama(),
    )
