"""
Document normalizer — turns PDF bytes into ordered pages plus visual elements.

Tiers, first success wins:

    service                 external parsing service (structured chunks,
                            tables, charts, images)
    service-with-splitting  same, but a single oversized page was re-split
    pdf-library             PyPDF2 text extraction, one page per PDF page
    basic-extraction        raw-byte text heuristics + logical page splitting
    placeholder             one neutral page; never fails

The tier that produced the pages is recorded on the result.
"""

import io
import logging
import re
from dataclasses import dataclass

import httpx
import PyPDF2

from valuation import config
from valuation.errors import ParseFailure
from valuation.fallback import Strategy, first_success
from valuation.ingest.pages import pages_from_text, split_into_pages
from valuation.models import ElementType, NormalizedDocument, Page, VisualElement

logger = logging.getLogger(__name__)


# ── Parsing-service client ───────────────────────────────────────────────────

class ParsingServiceClient:
    """Upload-then-parse client for the external document parser."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or config.PARSER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.PARSER_API_KEY
        self.timeout = timeout or config.PARSER_TIMEOUT

    async def parse(self, data: bytes, filename: str) -> dict:
        if not self.api_key:
            raise ParseFailure("parsing service is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
            upload = await client.post(
                f"{self.base_url}/upload",
                files={"file": (filename, data, "application/pdf")},
            )
            upload.raise_for_status()
            file_id = upload.json().get("file_id")
            if not file_id:
                raise ParseFailure("parsing service upload returned no file_id")

            resp = await client.post(f"{self.base_url}/parse", json={"document_url": file_id})
            resp.raise_for_status()
            return resp.json()


# ── Service result → pages / visual elements ─────────────────────────────────

def _result_body(result: dict) -> dict:
    body = result.get("result")
    return body if isinstance(body, dict) else result


def _chunk_page(chunk: dict, fallback: int) -> int:
    for key in ("page", "page_number", "pageNumber"):
        if isinstance(chunk.get(key), int):
            return chunk[key]
    for block in chunk.get("blocks") or []:
        page = (block.get("bbox") or {}).get("page")
        if isinstance(page, int):
            return page
    return fallback


def _chunk_text(chunk: dict) -> str:
    text = chunk.get("content") or chunk.get("text") or ""
    if not text and chunk.get("blocks"):
        text = "\n".join(b.get("content", "") for b in chunk["blocks"] if b.get("content"))
    return text.strip()


def pages_from_service_result(result: dict) -> list[Page]:
    """Group the service's chunks by page number; fall back to its plain text."""
    body = _result_body(result)
    by_page: dict[int, list[str]] = {}
    for i, chunk in enumerate(body.get("chunks") or []):
        text = _chunk_text(chunk)
        if text:
            by_page.setdefault(_chunk_page(chunk, i + 1), []).append(text)

    if by_page:
        return [
            Page(page_number=n, content="\n\n".join(parts))
            for n, parts in sorted(by_page.items())
        ]

    text = body.get("text") or body.get("content") or ""
    return pages_from_text(text) if isinstance(text, str) else []


def _table_content(table: dict) -> tuple[str, int, int]:
    rows = table.get("rows") or table.get("data") or []
    if isinstance(rows, list) and rows and isinstance(rows[0], list):
        lines = [" | ".join(str(cell) for cell in row) for row in rows]
        return "\n".join(lines), len(rows), max(len(r) for r in rows)
    content = table.get("content") or table.get("text") or ""
    return str(content), int(table.get("row_count") or 0), int(table.get("column_count") or 0)


def visual_elements_from_service_result(result: dict) -> list[VisualElement]:
    body = _result_body(result)
    elements: list[VisualElement] = []

    for i, table in enumerate(body.get("tables") or []):
        content, rows, cols = _table_content(table)
        elements.append(VisualElement(
            element_id=f"table_{i + 1}",
            element_type=ElementType.TABLE,
            page_number=int(table.get("page") or 1),
            title=table.get("title") or f"Table {i + 1}",
            description=table.get("description") or "",
            content=content,
            rows=rows,
            columns=cols,
            confidence=table.get("confidence"),
        ))

    for i, chart in enumerate(body.get("charts") or []):
        elements.append(VisualElement(
            element_id=f"chart_{i + 1}",
            element_type=ElementType.CHART,
            page_number=int(chart.get("page") or 1),
            title=chart.get("title") or f"Chart {i + 1}",
            description=chart.get("description") or "",
            chart_type=chart.get("type") or "unknown",
            data=chart.get("data"),
            confidence=chart.get("confidence"),
        ))

    for i, image in enumerate(body.get("images") or []):
        elements.append(VisualElement(
            element_id=f"image_{i + 1}",
            element_type=ElementType.IMAGE,
            page_number=int(image.get("page") or 1),
            title=image.get("title") or f"Image {i + 1}",
            description=image.get("description") or image.get("caption") or "",
            content=image.get("text") or "",
            confidence=image.get("confidence"),
        ))

    return elements


def attach_visual_elements(pages: list[Page], elements: list[VisualElement]) -> None:
    """Put each element on its page; elements past the last page go to the last page."""
    if not pages:
        return
    by_number = {p.page_number: p for p in pages}
    for el in elements:
        page = by_number.get(el.page_number) or pages[-1]
        page.visual_elements.append(el)


# ── Raw-byte heuristics ──────────────────────────────────────────────────────

_TJ_RE = re.compile(r"\(([^)]+)\)\s*Tj")
_TJ_ARRAY_RE = re.compile(r"\[((?:[^\]]*?))\]\s*TJ")
_TJ_ARRAY_PART_RE = re.compile(r"\(([^)]*)\)")
_READABLE_RE = re.compile(r"[A-Za-z0-9\s.,;:!?()$%-]+")
_STREAM_RE = re.compile(r"stream\s*(.*?)\s*endstream", re.DOTALL)
_PRINTABLE_RE = re.compile(r"[^\x20-\x7E\n\r\t]")


def _unescape_pdf_string(s: str) -> str:
    return (
        s.replace("\\n", " ")
        .replace("\\r", " ")
        .replace("\\t", " ")
        .replace("\\(", "(")
        .replace("\\)", ")")
        .replace("\\\\", "\\")
    )


def extract_text_from_raw_bytes(data: bytes) -> str:
    """Best-effort text recovery from an undecodable PDF's raw bytes."""
    raw = data.decode("latin-1")

    # text-showing operators
    pieces = [_unescape_pdf_string(m) for m in _TJ_RE.findall(raw)]
    for array in _TJ_ARRAY_RE.findall(raw):
        joined = "".join(_TJ_ARRAY_PART_RE.findall(array))
        if joined.strip():
            pieces.append(_unescape_pdf_string(joined))
    if len(pieces) > 10:
        text = " ".join(p.strip() for p in pieces if p.strip())
        if text:
            return text

    # long runs of readable characters
    runs = [r.strip() for r in _READABLE_RE.findall(raw) if len(r.strip()) > 20]
    readable = [r for r in runs if re.search(r"[A-Za-z]{3,}", r)]
    if readable:
        return " ".join(readable)

    # printable content of stream objects
    streams = []
    for body in _STREAM_RE.findall(raw):
        cleaned = re.sub(r"\s+", " ", _PRINTABLE_RE.sub(" ", body)).strip()
        if len(cleaned) > 10 and re.search(r"[A-Za-z]{3,}", cleaned):
            streams.append(cleaned)
    if streams:
        return "\n\n".join(streams)

    raise ParseFailure("no readable text in raw PDF bytes")


# ── Normalizer ───────────────────────────────────────────────────────────────

@dataclass
class _Source:
    data: bytes
    filename: str


class DocumentNormalizer:
    def __init__(
        self,
        parser: ParsingServiceClient | None = None,
        split_threshold: int | None = None,
        target_chars: int | None = None,
    ):
        self.parser = parser or ParsingServiceClient()
        self.split_threshold = split_threshold or config.PAGE_SPLIT_THRESHOLD
        self.target_chars = target_chars or config.PAGE_TARGET_CHARS

    async def normalize(self, data: bytes, filename: str) -> NormalizedDocument:
        strategies = [
            Strategy("service", self._from_service),
            Strategy("pdf-library", self._from_pdf_library),
            Strategy("basic-extraction", self._from_raw_bytes),
            Strategy("placeholder", self._placeholder),
        ]
        outcome = await first_success(strategies, _Source(data, filename), label=f"normalize {filename}")
        doc = outcome.value
        logger.info(
            "Normalized %s via tier '%s': %d pages, %d visual elements",
            filename, doc.parse_tier, len(doc.pages), len(doc.visual_elements),
        )
        return doc

    async def _from_service(self, src: _Source) -> NormalizedDocument:
        result = await self.parser.parse(src.data, src.filename)
        pages = pages_from_service_result(result)
        if not any(p.content.strip() for p in pages):
            raise ParseFailure("parsing service returned no text")

        tier = "service"
        if len(pages) == 1 and len(pages[0].content) > self.split_threshold:
            split = split_into_pages(pages[0].content, self.target_chars)
            if len(split) > 1:
                logger.info("Service returned one %d-char page; re-split into %d", len(pages[0].content), len(split))
                pages = [Page(page_number=i + 1, content=c) for i, c in enumerate(split)]
                tier = "service-with-splitting"

        attach_visual_elements(pages, visual_elements_from_service_result(result))
        return NormalizedDocument(filename=src.filename, pages=pages, parse_tier=tier)

    async def _from_pdf_library(self, src: _Source) -> NormalizedDocument:
        reader = PyPDF2.PdfReader(io.BytesIO(src.data))
        pages = []
        for i, pdf_page in enumerate(reader.pages):
            text = (pdf_page.extract_text() or "").strip()
            if text:
                pages.append(Page(page_number=i + 1, content=text))
        if not pages:
            raise ParseFailure("PDF library extracted no text")
        return NormalizedDocument(filename=src.filename, pages=pages, parse_tier="pdf-library")

    async def _from_raw_bytes(self, src: _Source) -> NormalizedDocument:
        text = extract_text_from_raw_bytes(src.data)
        pages = pages_from_text(text, self.target_chars)
        if not pages:
            raise ParseFailure("raw-byte extraction produced no pages")
        return NormalizedDocument(filename=src.filename, pages=pages, parse_tier="basic-extraction")

    async def _placeholder(self, src: _Source) -> NormalizedDocument:
        content = f"No extractable text was found in {src.filename}."
        return NormalizedDocument(
            filename=src.filename,
            pages=[Page(page_number=1, content=content)],
            parse_tier="placeholder",
        )
