"""
Logical page splitting for text that arrives without page structure.

Page-break patterns are tried in order and the first one that yields more than
one non-empty segment wins.  The break markers themselves stay in the text
(attached to the page they close), so joining the pages back together gives
the original text up to whitespace.  Without usable markers the text is
packed paragraph by paragraph into pages of roughly ``target_chars``.
"""

import logging
import re

from valuation.config import PAGE_TARGET_CHARS
from valuation.models import Page

logger = logging.getLogger(__name__)

_PAGE_BREAK_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("page-marker", re.compile(r"(\n\s*Page\s+\d+(?:\s+of\s+\d+)?\s*\n)", re.IGNORECASE)),
    ("form-feed", re.compile(r"(\f)")),
    ("dashed-number", re.compile(r"(\n\s*-\s*\d+\s*-\s*\n)")),
    ("lone-number", re.compile(r"(\n\s*\d{1,4}\s*\n)(?=\s*[A-Z])")),
]

_PARAGRAPH_RE = re.compile(r"\n\s*\n")


def _split_on(pattern: re.Pattern, text: str) -> list[str]:
    parts = pattern.split(text)
    pages: list[str] = []
    carry = ""
    # parts alternates segment, delimiter, segment, ... ; delimiters stay with
    # the page they close, empty segments fold into the next page
    for i in range(0, len(parts), 2):
        segment = parts[i]
        delimiter = parts[i + 1] if i + 1 < len(parts) else ""
        if segment.strip():
            pages.append(carry + segment + delimiter)
            carry = ""
        else:
            carry += segment + delimiter
    if carry:
        if pages:
            pages[-1] += carry
        else:
            pages.append(carry)
    return [p.strip() for p in pages if p.strip()]


def split_by_length(text: str, target_chars: int | None = None) -> list[str]:
    """Pack whole paragraphs into pages of about *target_chars*; never split a paragraph."""
    target_chars = target_chars or PAGE_TARGET_CHARS
    if len(text) <= target_chars:
        return [text.strip()] if text.strip() else []

    pages: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_RE.split(text):
        if not paragraph.strip():
            continue
        if current and len(current) + len(paragraph) + 2 > target_chars:
            pages.append(current.strip())
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current.strip():
        pages.append(current.strip())
    return pages


def split_into_pages(text: str, target_chars: int | None = None) -> list[str]:
    """Split *text* into logical page strings."""
    if not text or not text.strip():
        return []
    for name, pattern in _PAGE_BREAK_PATTERNS:
        pages = _split_on(pattern, text)
        if len(pages) > 1:
            logger.debug("Found %d pages using %s pattern", len(pages), name)
            return pages
    logger.debug("No page breaks found, splitting by content size")
    return split_by_length(text, target_chars)


def pages_from_text(text: str, target_chars: int | None = None) -> list[Page]:
    return [
        Page(page_number=i + 1, content=content)
        for i, content in enumerate(split_into_pages(text, target_chars))
    ]


def group_pages(pages: list[str], target_chars: int | None = None) -> list[str]:
    """Join consecutive pages into segments of about *target_chars*; a page is never split."""
    target_chars = target_chars or PAGE_TARGET_CHARS
    segments: list[str] = []
    current = ""
    for page in pages:
        if not page.strip():
            continue
        if current and len(current) + len(page) + 2 > target_chars:
            segments.append(current)
            current = page.strip()
        else:
            current = f"{current}\n\n{page.strip()}" if current else page.strip()
    if current:
        segments.append(current)
    return segments
