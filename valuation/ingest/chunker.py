"""
Chunking for embedding: page-bounded text chunks plus one chunk per visual element.

Text chunks never cross a page.  A page that fits in ``max_chars`` is one
chunk; a longer page is packed sentence by sentence, and each new chunk starts
with the last ``overlap_words`` words of the previous one.
"""

import json
import re

from valuation.config import CHUNK_MAX_CHARS, CHUNK_OVERLAP_WORDS
from valuation.models import Chunk, ElementType, NormalizedDocument, Page, VisualElement
from valuation.tokens import count_tokens

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def chunk_page_text(
    content: str,
    max_chars: int | None = None,
    overlap_words: int | None = None,
) -> list[str]:
    """Split one page's text into chunk strings."""
    max_chars = max_chars if max_chars is not None else CHUNK_MAX_CHARS
    overlap_words = overlap_words if overlap_words is not None else CHUNK_OVERLAP_WORDS

    if not content or not content.strip():
        return []
    if len(content) <= max_chars:
        return [content.strip()]

    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_RE.split(content):
        sentence = sentence.strip()
        if not sentence:
            continue
        if current and len(current) + len(sentence) + 1 > max_chars:
            chunks.append(current.strip())
            tail = current.split()[-overlap_words:] if overlap_words else []
            current = " ".join(tail + [sentence])
        else:
            current = f"{current} {sentence}" if current else sentence
    if current.strip():
        chunks.append(current.strip())

    return chunks or [content.strip()]


def describe_visual_element(el: VisualElement, ordinal: int) -> str:
    """Readable text form of a table, chart or image for embedding."""
    kind = el.element_type.value.upper()
    lines = [f"{kind} {ordinal} (Page {el.page_number}): {el.title}"]
    if el.description:
        lines.append(el.description)

    if el.element_type is ElementType.TABLE:
        lines += ["", "Content:", el.content, ""]
        lines.append(f"This table has {el.rows} rows and {el.columns} columns.")
    elif el.element_type is ElementType.CHART:
        lines += ["", f"Chart Type: {el.chart_type or 'unknown'}"]
        if el.data is not None:
            lines.append(f"Data: {json.dumps(el.data, default=str)}")
    else:
        if el.content:
            lines += ["", f"Text in image: {el.content}"]

    lines.append(f"Location: Page {el.page_number}")
    return "\n".join(lines)


def _visual_chunks(doc: NormalizedDocument) -> list[tuple[VisualElement, str]]:
    ordinals: dict[ElementType, int] = {}
    out = []
    for el in doc.visual_elements:
        ordinals[el.element_type] = ordinals.get(el.element_type, 0) + 1
        out.append((el, describe_visual_element(el, ordinals[el.element_type])))
    return out


def chunk_document(
    doc: NormalizedDocument,
    max_chars: int | None = None,
    overlap_words: int | None = None,
) -> list[Chunk]:
    """
    Chunk a normalized document.

    Visual-element chunks come first, then text chunks in page order.
    ``chunk_index`` is unique and sequential across the whole document.
    """
    chunks: list[Chunk] = []

    for el, text in _visual_chunks(doc):
        chunks.append(Chunk(
            chunk_index=len(chunks),
            page_number=el.page_number,
            content=text,
            token_count=count_tokens(text),
            is_visual=True,
            metadata={
                "element_id": el.element_id,
                "element_type": el.element_type.value,
                "title": el.title,
            },
        ))

    pages: list[Page] = sorted(doc.pages, key=lambda p: p.page_number)
    for page in pages:
        for part, text in enumerate(chunk_page_text(page.content, max_chars, overlap_words)):
            chunks.append(Chunk(
                chunk_index=len(chunks),
                page_number=page.page_number,
                content=text,
                token_count=count_tokens(text),
                metadata={"page_chunk": part},
            ))

    return chunks
