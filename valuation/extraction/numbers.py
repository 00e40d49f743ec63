"""
Number parsing for model replies and document text.

Handles the shapes valuation reports and language models produce:
``$50,000,000``, ``$50 million``, ``12.5%``, ``1.2bn``, ``400,000``.
"""

import math
import re
from typing import Optional

_MULTIPLIERS = {
    "thousand": 1e3,
    "k": 1e3,
    "million": 1e6,
    "mm": 1e6,
    "m": 1e6,
    "billion": 1e9,
    "bn": 1e9,
    "b": 1e9,
}

_AMOUNT_RE = re.compile(
    r"(?P<currency>\$\s*)?(?P<number>\d[\d,]*(?:\.\d+)?)"
    r"(?:\s*(?P<unit>million|mm|billion|bn|thousand|percent|[mbk])\b|\s*(?P<pct>%))?",
    re.IGNORECASE,
)

_NOT_FOUND_MARKERS = (
    "not_found",
    "not found",
    "insufficient_data",
    "unavailable",
    "unknown",
    "n/a",
)


def _to_float(number: str) -> Optional[float]:
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _apply_unit(value: float, unit: Optional[str]) -> float:
    if not unit:
        return value
    return value * _MULTIPLIERS.get(unit.lower(), 1)


def parse_value_with_units(text: str) -> Optional[float]:
    """Return the first number in *text*, scaled by a unit word that directly follows it."""
    if not text:
        return None
    match = _AMOUNT_RE.search(text)
    if not match:
        return None
    value = _to_float(match.group("number"))
    if value is None:
        return None
    return _apply_unit(value, match.group("unit"))


def coerce_number(value) -> Optional[float]:
    """Coerce a JSON leaf into a float, or None when it isn't numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = float(value)
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("null", "none"):
            return None
        if any(marker in text.lower() for marker in _NOT_FOUND_MARKERS):
            return None
        return parse_value_with_units(text)
    return None


def parse_metric_response(response: Optional[str]) -> Optional[float]:
    """
    Pull the most plausible number out of a free-text model reply.

    Matches carrying a currency symbol, a unit word or a percent sign win over
    bare numbers, and bare numbers win over bare years; within a priority the
    first wins.
    """
    if not response:
        return None
    text = response.strip()
    lowered = text.lower()
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return None

    best: Optional[float] = None
    best_priority = 0
    for match in _AMOUNT_RE.finditer(text):
        value = _to_float(match.group("number"))
        if value is None or value < 0:
            continue
        unit = match.group("unit")
        if match.group("currency") or unit or match.group("pct"):
            priority = 3
        elif re.fullmatch(r"(?:19|20)\d{2}", match.group("number")):
            priority = 1
        else:
            priority = 2
        if priority > best_priority:
            best = _apply_unit(value, unit)
            best_priority = priority
    return best
