"""
Valuation-date handling: normalize a stated date and classify how a piece of
supporting text relates to it in time.
"""

import re
from datetime import datetime
from typing import Optional

from dateutil import parser as date_parser

from valuation.models import DateRelevance

_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")

_CURRENT_MARKERS = (
    "as of",
    "valuation date",
    "effective date",
    "concluded",
    "conclusion",
    "final",
    "indicated value",
)

_HISTORICAL_MARKERS = (
    "prior year",
    "previous year",
    "last year",
    "historical",
    "historically",
    "previously",
    "projected",
    "projection",
    "forecast",
    "budget",
    "expected to",
    "estimated for",
    "pro forma",
    "next year",
    "future",
)

# Date-proximity weight per relevance class; UNKNOWN carries no signal.
DATE_PROXIMITY = {
    DateRelevance.CURRENT: 1.0,
    DateRelevance.LIKELY_CURRENT: 0.75,
    DateRelevance.HISTORICAL_OR_PROJECTED: 0.25,
}


def normalize_date(text: Optional[str]) -> Optional[str]:
    """Parse a free-form date ("December 31, 2023", "12/31/2023") to YYYY-MM-DD."""
    if not text or not _YEAR_RE.search(text):
        return None
    try:
        parsed = date_parser.parse(text, fuzzy=True, dayfirst=False, default=datetime(2000, 1, 1))
    except (ValueError, OverflowError):
        return None
    return parsed.strftime("%Y-%m-%d")


def _mentions_date(text: str, valuation_date: str) -> bool:
    try:
        d = datetime.strptime(valuation_date, "%Y-%m-%d")
    except ValueError:
        return False
    forms = {
        valuation_date,
        d.strftime("%B %d, %Y").lower(),
        f"{d.strftime('%B')} {d.day}, {d.year}".lower(),
        f"{d.month}/{d.day}/{d.year}",
        d.strftime("%m/%d/%Y"),
    }
    return any(f in text for f in forms)


def classify_relevance(
    evidence: Optional[str],
    valuation_date: Optional[str] = None,
    targeted: bool = False,
) -> DateRelevance:
    """
    Classify supporting text relative to the valuation date.

    current                  tied to the valuation date or labeled final/concluded
    likely_current           authoritative framing, no historical/projected marker
    historical_or_projected  prior-period or forecast language, or only other years
    unknown                  no supporting text
    """
    if not evidence or not evidence.strip():
        return DateRelevance.UNKNOWN
    text = evidence.lower()

    if valuation_date and _mentions_date(text, valuation_date):
        return DateRelevance.CURRENT

    historical = any(marker in text for marker in _HISTORICAL_MARKERS)
    years = set(_YEAR_RE.findall(text))
    valuation_year = valuation_date[:4] if valuation_date else None

    if valuation_year and years:
        if valuation_year in years and not historical:
            return DateRelevance.CURRENT
        if valuation_year not in years:
            return DateRelevance.HISTORICAL_OR_PROJECTED

    if historical:
        return DateRelevance.HISTORICAL_OR_PROJECTED
    if targeted or any(marker in text for marker in _CURRENT_MARKERS):
        return DateRelevance.CURRENT
    return DateRelevance.LIKELY_CURRENT
