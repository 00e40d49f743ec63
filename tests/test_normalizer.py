"""
Tests for valuation.ingest.normalizer — tiered PDF → pages.

The parsing service is replaced by small fake clients; the PDF-library tier
runs against real reportlab-generated PDFs.
"""

import httpx
import pytest

from valuation.errors import ParseFailure
from valuation.ingest.normalizer import (
    DocumentNormalizer,
    ParsingServiceClient,
    attach_visual_elements,
    extract_text_from_raw_bytes,
    pages_from_service_result,
    visual_elements_from_service_result,
)
from valuation.models import ElementType, Page


# ── helper fixtures ──────────────────────────────────────────────────────────

class FakeParser:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def parse(self, data, filename):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


SERVICE_RESULT = {
    "result": {
        "chunks": [
            {"content": "Executive summary. Total Company Value: $50,000,000.", "page": 1},
            {"content": "Capital structure discussion.", "page": 2},
            {"blocks": [{"content": "ESOP ownership 30%", "bbox": {"page": 2}}]},
        ],
        "tables": [
            {
                "page": 2,
                "title": "Ownership Summary",
                "rows": [["Holder", "Shares", "Percent"], ["ESOP", "300,000", "30%"], ["Founders", "700,000", "70%"]],
            }
        ],
        "charts": [{"page": 1, "title": "Revenue Trend", "type": "bar", "data": {"2023": 45, "2022": 40}}],
    }
}


@pytest.fixture
def sample_pdf_bytes(tmp_path):
    """Two-page PDF with extractable text."""
    from reportlab.pdfgen import canvas as rl_canvas
    pdf_path = str(tmp_path / "acme_esop_2023.pdf")
    c = rl_canvas.Canvas(pdf_path)
    c.drawString(100, 750, "Total Company Value: $50,000,000")
    c.showPage()
    c.drawString(100, 750, "Discount Rate 12.5%")
    c.showPage()
    c.save()
    with open(pdf_path, "rb") as f:
        return f.read()


RAW_PDF_BYTES = (
    b"%PDF-1.4\n1 0 obj\n<< /Length 500 >>\nstream\nBT\n"
    + b"".join(b"(Line %d of the valuation report) Tj\n" % i for i in range(12))
    + b"[(Total Company ) -20 (Value: $50,000,000)] TJ\nET\nendstream\nendobj\n"
)


# ── service result parsing ───────────────────────────────────────────────────

class TestServiceResult:
    def test_pages_grouped_by_page_number(self):
        pages = pages_from_service_result(SERVICE_RESULT)
        assert [p.page_number for p in pages] == [1, 2]
        assert "Total Company Value" in pages[0].content
        assert "ESOP ownership 30%" in pages[1].content

    def test_falls_back_to_plain_text(self):
        pages = pages_from_service_result({"text": "Alpha.\nPage 1\nBeta.\nPage 2\nGamma."})
        assert len(pages) == 3

    def test_visual_elements(self):
        elements = visual_elements_from_service_result(SERVICE_RESULT)
        table = next(e for e in elements if e.element_type is ElementType.TABLE)
        chart = next(e for e in elements if e.element_type is ElementType.CHART)
        assert table.page_number == 2
        assert table.rows == 3 and table.columns == 3
        assert "ESOP | 300,000 | 30%" in table.content
        assert chart.chart_type == "bar"
        assert chart.data == {"2023": 45, "2022": 40}

    def test_attach_past_last_page(self):
        pages = [Page(page_number=1, content="only page")]
        elements = visual_elements_from_service_result(SERVICE_RESULT)
        attach_visual_elements(pages, elements)
        assert len(pages[0].visual_elements) == len(elements)


class TestParsingServiceClient:
    @pytest.mark.asyncio
    async def test_not_configured(self):
        client = ParsingServiceClient(api_key="")
        with pytest.raises(ParseFailure):
            await client.parse(b"%PDF", "x.pdf")

    @pytest.mark.asyncio
    async def test_upload_then_parse(self, monkeypatch):
        seen = []

        async def mock_post(self, url, **kwargs):
            seen.append(url)
            request = httpx.Request("POST", url)
            if url.endswith("/upload"):
                assert "file" in kwargs["files"]
                return httpx.Response(200, json={"file_id": "file-123"}, request=request)
            assert kwargs["json"] == {"document_url": "file-123"}
            return httpx.Response(200, json=SERVICE_RESULT, request=request)

        monkeypatch.setattr(httpx.AsyncClient, "post", mock_post)

        client = ParsingServiceClient(base_url="https://parser.test", api_key="key")
        result = await client.parse(b"%PDF-1.4", "report.pdf")
        assert seen == ["https://parser.test/upload", "https://parser.test/parse"]
        assert result == SERVICE_RESULT

    @pytest.mark.asyncio
    async def test_http_error_raises(self, monkeypatch):
        async def mock_post(self, url, **kwargs):
            return httpx.Response(500, request=httpx.Request("POST", url))

        monkeypatch.setattr(httpx.AsyncClient, "post", mock_post)

        client = ParsingServiceClient(base_url="https://parser.test", api_key="key")
        with pytest.raises(httpx.HTTPStatusError):
            await client.parse(b"%PDF-1.4", "report.pdf")


# ── raw-byte heuristics ──────────────────────────────────────────────────────

class TestRawBytes:
    def test_text_operators(self):
        text = extract_text_from_raw_bytes(RAW_PDF_BYTES)
        assert "Line 0 of the valuation report" in text
        assert "Total Company Value: $50,000,000" in text

    def test_readable_runs(self):
        data = b"\x00\x01garbage\xff This is a readable sentence about valuation. \x00\x02"
        assert "readable sentence about valuation" in extract_text_from_raw_bytes(data)

    def test_nothing_readable(self):
        with pytest.raises(ParseFailure):
            extract_text_from_raw_bytes(bytes(range(0, 32)) * 4)


# ── normalizer tiers ─────────────────────────────────────────────────────────

class TestDocumentNormalizer:
    @pytest.mark.asyncio
    async def test_service_tier(self):
        normalizer = DocumentNormalizer(parser=FakeParser(SERVICE_RESULT))
        doc = await normalizer.normalize(b"%PDF", "acme.pdf")
        assert doc.parse_tier == "service"
        assert len(doc.pages) == 2
        assert len(doc.pages[1].visual_elements) == 1
        assert len(doc.pages[0].visual_elements) == 1

    @pytest.mark.asyncio
    async def test_service_single_long_page_is_resplit(self):
        text = "Alpha section text here.\nPage 1\nBeta section text here.\nPage 2\nGamma section text here."
        parser = FakeParser({"result": {"chunks": [{"content": text, "page": 1}]}})
        normalizer = DocumentNormalizer(parser=parser, split_threshold=50)
        doc = await normalizer.normalize(b"%PDF", "acme.pdf")
        assert doc.parse_tier == "service-with-splitting"
        assert [p.page_number for p in doc.pages] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_pdf_library_tier(self, sample_pdf_bytes):
        normalizer = DocumentNormalizer(parser=FakeParser(error=ParseFailure("service down")))
        doc = await normalizer.normalize(sample_pdf_bytes, "acme_esop_2023.pdf")
        assert doc.parse_tier == "pdf-library"
        assert [p.page_number for p in doc.pages] == [1, 2]
        assert "Total Company Value" in doc.pages[0].content
        assert "Discount Rate" in doc.text

    @pytest.mark.asyncio
    async def test_service_returning_no_text_falls_through(self, sample_pdf_bytes):
        normalizer = DocumentNormalizer(parser=FakeParser({"result": {"chunks": []}}))
        doc = await normalizer.normalize(sample_pdf_bytes, "acme.pdf")
        assert doc.parse_tier == "pdf-library"

    @pytest.mark.asyncio
    async def test_basic_extraction_tier(self):
        normalizer = DocumentNormalizer(parser=FakeParser(error=ParseFailure("service down")))
        doc = await normalizer.normalize(RAW_PDF_BYTES, "broken.pdf")
        assert doc.parse_tier == "basic-extraction"
        assert "Total Company Value" in doc.text

    @pytest.mark.asyncio
    async def test_placeholder_tier(self):
        normalizer = DocumentNormalizer(parser=FakeParser(error=ParseFailure("service down")))
        doc = await normalizer.normalize(bytes(range(0, 32)) * 4, "scan.pdf")
        assert doc.parse_tier == "placeholder"
        assert len(doc.pages) == 1
        assert "scan.pdf" in doc.pages[0].content
        # no invented figures
        assert "$" not in doc.text
