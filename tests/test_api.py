"""
Tests for the FastAPI endpoints.

The orchestrator points at a temporary database; no job is actually processed
except where a test drives one to a terminal state by hand.
"""

import pytest
from fastapi.testclient import TestClient

import api.main as main
from valuation.corpus.manager import save_metrics
from valuation.ingest.pipeline import store_document
from valuation.jobs.orchestrator import JobOrchestrator
from valuation.models import JobStatus, MetricSet, NormalizedDocument, Page, ValidationResult
from valuation.storage import LocalFileStorage


@pytest.fixture
def orchestrator(tmp_path, monkeypatch):
    orch = JobOrchestrator(
        db_path=str(tmp_path / "api.db"),
        storage=LocalFileStorage(str(tmp_path / "uploads")),
    )
    monkeypatch.setattr(main, "_orchestrator", orch)

    async def fake_check_ollama(*args, **kwargs):
        return False

    monkeypatch.setattr(main, "check_ollama", fake_check_ollama)
    return orch


@pytest.fixture
def client(orchestrator):
    with TestClient(main.app) as tc:
        yield tc


@pytest.fixture
def stored_doc(orchestrator):
    doc = NormalizedDocument(
        filename="acme_esop_2023.pdf",
        parse_tier="pdf-library",
        pages=[Page(page_number=1, content="Revenue $30,000,000.")],
    )
    store_document("doc1", doc, "data/uploads/missing.pdf", [], db_path=orchestrator.db_path)
    return "doc1"


def test_health(client, monkeypatch):
    monkeypatch.setattr(main.config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(main.config, "PARSER_API_KEY", "")
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["llm_configured"] is True
    assert data["parser_configured"] is False
    assert data["ollama_available"] is False


class TestJobs:
    def test_missing_job(self, client):
        assert client.get("/jobs/nope").status_code == 404
        assert client.get("/jobs/nope/events").status_code == 404

    def test_get_job(self, client, orchestrator):
        job = orchestrator.store.create("acme.pdf")
        resp = client.get(f"/jobs/{job.id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["filename"] == "acme.pdf"

    def test_events_for_finished_job(self, client, orchestrator):
        job = orchestrator.store.create("acme.pdf")
        orchestrator.store.update(job.id, status=JobStatus.FAILED, error_message="disk full")

        resp = client.get(f"/jobs/{job.id}/events")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = [line for line in resp.text.splitlines() if line.startswith("data: ")]
        assert '"status":"failed"' in events[0]
        assert events[-1] == "data: [DONE]"

    def test_upload_returns_pending_job(self, client, orchestrator, monkeypatch):
        received = {}

        async def fake_run(job_id, data, filename):
            received.update(job_id=job_id, data=data, filename=filename)

        monkeypatch.setattr(orchestrator, "run", fake_run)
        resp = client.post("/documents", files={"file": ("acme.pdf", b"%PDF-1.4 body", "application/pdf")})

        assert resp.status_code == 202
        data = resp.json()
        assert data["status"] == "pending"
        assert data["filename"] == "acme.pdf"
        assert orchestrator.store.get(data["id"]) is not None

    def test_empty_upload_rejected(self, client):
        resp = client.post("/documents", files={"file": ("empty.pdf", b"", "application/pdf")})
        assert resp.status_code == 422


class TestDocuments:
    def test_empty_list(self, client):
        resp = client.get("/documents")
        assert resp.status_code == 200
        assert resp.json()["documents"] == []

    def test_list_and_get(self, client, stored_doc):
        docs = client.get("/documents").json()["documents"]
        assert [d["id"] for d in docs] == [stored_doc]

        resp = client.get(f"/documents/{stored_doc}")
        assert resp.status_code == 200
        assert resp.json()["filename"] == "acme_esop_2023.pdf"
        assert resp.json()["parse_tier"] == "pdf-library"

    def test_get_missing(self, client):
        assert client.get("/documents/nope").status_code == 404

    def test_metrics(self, client, orchestrator, stored_doc):
        assert client.get(f"/documents/{stored_doc}/metrics").status_code == 404

        metrics = MetricSet.model_validate({"keyFinancials": {"revenue": 30_000_000}})
        validation = ValidationResult(values={"revenue": 30_000_000}, confidence=64)
        save_metrics(stored_doc, metrics, validation, 64, db_path=orchestrator.db_path)

        resp = client.get(f"/documents/{stored_doc}/metrics")
        assert resp.status_code == 200
        data = resp.json()
        assert data["document_id"] == stored_doc
        assert data["metrics"]["keyFinancials"]["revenue"] == 30_000_000
        assert data["validation"]["confidence"] == 64

    def test_delete(self, client, stored_doc):
        resp = client.delete(f"/documents/{stored_doc}")
        assert resp.status_code == 200
        assert resp.json() == {"deleted": stored_doc}
        assert client.get(f"/documents/{stored_doc}").status_code == 404
        assert client.delete(f"/documents/{stored_doc}").status_code == 404
